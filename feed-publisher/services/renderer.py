"""
Token renderer and live data store.

Templates reference live data with ``{tag}`` or ``{tag:format_spec}`` tokens,
for example ``{"temp": {temp:.1f}, "hum": {hum}}``.
"""

import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from domain.ports import Renderer
from domain.schema import RenderResult


logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\{(?P<tag>[A-Za-z_][A-Za-z0-9_]*)(?::(?P<spec>[^{}]*))?\}")


class LiveDataStore:
    """Holds the latest live-data snapshot published by the application."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()
        self.updated_at: Optional[datetime] = None

    def update(self, values: Mapping[str, Any]) -> None:
        """Merge new tag values into the snapshot."""
        with self._lock:
            self._values.update(values)
            self.updated_at = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._values)

    def __len__(self) -> int:
        return len(self._values)


class TokenRenderer(Renderer):
    """
    Renders templates against a LiveDataStore snapshot.

    The comparison value is rendered from the same snapshot but leaves tokens
    of excluded tags untouched, so their changes never alter it.
    """

    def __init__(self, data_store: LiveDataStore):
        self.data_store = data_store

    def render(
        self,
        template_text: str,
        excluded_tags: Optional[Iterable[str]] = None
    ) -> RenderResult:
        snapshot = self.data_store.snapshot()
        output = _substitute(template_text, snapshot, frozenset())

        if excluded_tags is None:
            return RenderResult(output=output, comparison_value=output)

        comparison = _substitute(template_text, snapshot, frozenset(excluded_tags))
        return RenderResult(output=output, comparison_value=comparison)


def _substitute(template_text: str, values: Mapping[str, Any], skip: frozenset) -> str:
    def replace(match: re.Match) -> str:
        tag = match.group("tag")
        if tag in skip or tag not in values:
            return match.group(0)
        return _format_value(values[tag], match.group("spec"), tag)

    return TOKEN_PATTERN.sub(replace, template_text)


def _format_value(value: Any, spec: Optional[str], tag: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        # JSON payloads expect lower-case booleans
        return "true" if value else "false"
    if spec:
        try:
            return format(value, spec)
        except (TypeError, ValueError) as e:
            logger.debug(f"Invalid format spec '{spec}' for tag {tag}: {e}")
    return str(value)
