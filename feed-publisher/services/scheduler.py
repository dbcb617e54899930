"""
Feed scheduler for mqtt-feed service.
Runs one feed cycle: load template, gate each topic, render, dedup, dispatch.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional, Union

from domain.ports import DedupCache, Publisher, Renderer, TemplateError, TemplateStore
from domain.schema import CycleResult, FeedType, TopicDefinition
from telemetry.logger import MetricsLogger, cycle_context


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 600

Timestamp = Union[datetime, int, float]


def to_unix_seconds(now: Timestamp) -> int:
    """Convert a datetime or epoch number to whole Unix seconds."""
    if isinstance(now, datetime):
        return int(now.timestamp())
    return int(now)


def is_topic_due(
    feed_type: Union[FeedType, str],
    topic: TopicDefinition,
    now_seconds: int,
    default_interval: int = DEFAULT_INTERVAL_SECONDS
) -> bool:
    """
    Decide whether a topic publishes in this cycle.

    Interval topics are due when the absolute Unix time is a multiple of their
    interval, so topics sharing an interval fire in the same second. Topics of
    any other feed type are always due.
    """
    if feed_type != FeedType.INTERVAL:
        return True
    return now_seconds % (topic.interval or default_interval) == 0


class FeedScheduler:
    """
    Orchestrates one feed cycle per call.

    Cycles are serialized with a lock so overlapping interval and data update
    triggers never interleave dedup cache updates.
    """

    def __init__(
        self,
        template_store: TemplateStore,
        renderer: Renderer,
        dedup_cache: DedupCache,
        publisher: Publisher,
        default_interval: int = DEFAULT_INTERVAL_SECONDS,
        prune_stale: bool = True
    ):
        """
        Initialize feed scheduler.

        Args:
            template_store: Loads the template file of a feed type
            renderer: Renders topic templates against live data
            dedup_cache: Last published comparison values
            publisher: Sends rendered messages
            default_interval: Interval for topics that do not set one
            prune_stale: Reconcile the dedup cache after each update template load
        """
        self.template_store = template_store
        self.renderer = renderer
        self.dedup_cache = dedup_cache
        self.publisher = publisher
        self.default_interval = default_interval
        self.prune_stale = prune_stale

        self._lock = asyncio.Lock()
        self.metrics = MetricsLogger("metrics.scheduler")

    async def run_cycle(
        self,
        feed_type: Union[FeedType, str],
        now: Optional[Timestamp] = None
    ) -> CycleResult:
        """
        Run one feed cycle.

        Errors never propagate to the caller; they are logged and end the
        cycle early. Dedup updates made before the error are kept.

        Args:
            feed_type: Interval or DataUpdate
            now: Cycle timestamp, defaults to the current time

        Returns:
            CycleResult summarising the cycle
        """
        feed_type = _coerce_feed_type(feed_type)
        now_seconds = to_unix_seconds(time.time() if now is None else now)

        with cycle_context(_feed_name(feed_type), now_seconds):
            async with self._lock:
                started = time.perf_counter()
                result = await self._run_locked(feed_type, now_seconds)

            self.metrics.log_cycle_completed(
                feed_type=_feed_name(feed_type),
                topics_evaluated=result.topics_evaluated,
                published=result.published,
                deduplicated=result.deduplicated,
                duration_ms=(time.perf_counter() - started) * 1000,
                aborted=result.aborted
            )
        return result

    async def _run_locked(self, feed_type: Union[FeedType, str], now_seconds: int) -> CycleResult:
        result = CycleResult(feed_type=_result_feed_type(feed_type))
        template_path = self.template_store.path_for(feed_type)

        try:
            template = self.template_store.load(feed_type)
        except TemplateError as e:
            logger.error(
                f"Error loading template file [{e.path}], error = {e.message}",
                extra={"component": "scheduler", "template": str(e.path)}
            )
            result.aborted = True
            return result

        if template is None:
            return result

        result.template_found = True
        use_comparison = feed_type == FeedType.DATA_UPDATE

        try:
            if use_comparison and self.prune_stale:
                await self.dedup_cache.reconcile(
                    topic.data for topic in template.topics
                    if topic.do_not_trigger_on_tags is not None
                )

            for topic in template.topics:
                result.topics_evaluated += 1

                if not is_topic_due(feed_type, topic, now_seconds, self.default_interval):
                    continue

                result.topics_due += 1
                logger.debug(
                    f"Processing {_feed_name(feed_type)} topic: {topic.topic}",
                    extra={"component": "scheduler", "topic": topic.topic}
                )

                excluded = topic.do_not_trigger_on_tags if use_comparison else None
                rendered = self.renderer.render(topic.data, excluded)

                if excluded is not None:
                    previous = await self.dedup_cache.get(topic.data)
                    if previous == rendered.comparison_value:
                        result.deduplicated += 1
                        continue
                    self.publisher.dispatch(topic.topic, rendered.output, topic.retain)
                    await self.dedup_cache.upsert(topic.data, rendered.comparison_value)
                else:
                    self.publisher.dispatch(topic.topic, rendered.output, topic.retain)

                result.published += 1

        except Exception as e:
            logger.error(
                f"Error processing the template file [{template_path}], error = {e}",
                extra={"component": "scheduler", "template": str(template_path)}
            )
            result.aborted = True

        return result


def _coerce_feed_type(feed_type: Union[FeedType, str]) -> Union[FeedType, str]:
    try:
        return FeedType(feed_type)
    except ValueError:
        return feed_type


def _result_feed_type(feed_type: Union[FeedType, str]) -> FeedType:
    # Unknown feed types behave like the on-demand feed
    if isinstance(feed_type, FeedType):
        return feed_type
    return FeedType.DATA_UPDATE


def _feed_name(feed_type: Union[FeedType, str]) -> str:
    return str(getattr(feed_type, "value", feed_type))
