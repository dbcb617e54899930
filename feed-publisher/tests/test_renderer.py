"""
Tests for the token renderer and live data store.
"""

from services.renderer import LiveDataStore, TokenRenderer


def make_renderer(**values) -> TokenRenderer:
    return TokenRenderer(LiveDataStore(values))


def test_substitutes_tags_inside_json_text():
    renderer = make_renderer(temp=21.456, hum=40)

    result = renderer.render('{"temp": {temp:.1f}, "hum": {hum}}')

    assert result.output == '{"temp": 21.5, "hum": 40}'
    assert result.comparison_value == result.output


def test_unknown_tags_are_left_verbatim():
    result = make_renderer().render("value={missing}")
    assert result.output == "value={missing}"


def test_booleans_and_none_render_for_json():
    result = make_renderer(online=True, fault=False, note=None).render("{online},{fault},{note}")
    assert result.output == "true,false,"


def test_invalid_format_spec_falls_back_to_str():
    result = make_renderer(name="north").render("{name:.1f}")
    assert result.output == "north"


def test_excluded_tags_do_not_affect_comparison_value():
    store = LiveDataStore({"temp": 20, "time": "10:00"})
    renderer = TokenRenderer(store)
    template = "Temp={temp} at {time}"

    first = renderer.render(template, {"time"})
    store.update({"time": "10:01"})
    second = renderer.render(template, {"time"})

    assert first.output == "Temp=20 at 10:00"
    assert second.output == "Temp=20 at 10:01"
    assert first.comparison_value == second.comparison_value == "Temp=20 at {time}"


def test_empty_exclusion_set_compares_full_output():
    result = make_renderer(v=1).render("v={v}", frozenset())
    assert result.comparison_value == "v=1"


def test_render_is_deterministic_for_same_snapshot():
    renderer = make_renderer(a=1, b="x")
    assert renderer.render("{a}{b}", {"b"}) == renderer.render("{a}{b}", {"b"})


def test_store_update_merges_values():
    store = LiveDataStore({"a": 1})

    store.update({"b": 2})
    store.update({"a": 3})

    assert store.snapshot() == {"a": 3, "b": 2}
    assert len(store) == 2
    assert store.updated_at is not None
