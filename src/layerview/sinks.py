"""Output channels and the sinks that receive marker batches."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from layerview.markers import Marker

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    """Named marker outputs, one per kind of visual."""

    CENTROIDS = "semantic_instance_centroid"
    BOUNDING_BOXES = "bounding_boxes"
    LABELS = "instance_ids"
    MESH_EDGES = "edges_centroid_pcl"
    GRAPH_EDGES = "edges_node_node"


class MarkerSink:
    """Base class for marker consumers.

    Subclass and override ``publish``. Publishing is fire-and-forget:
    the visualizer never waits on a sink.
    """

    def publish(self, channel: Channel, markers: Sequence[Marker]) -> None:
        """Called with each non-empty batch. Override in subclasses."""

    def shutdown(self) -> None:
        """Called once when the visualizer stops. Override to flush buffers."""


class MarkerDispatcher:
    """Fans marker batches out to a list of sinks.

    By default, dispatch is best-effort: a failing sink never breaks the
    redraw loop, and each dropped batch is counted per sink and channel.
    With ``strict=True``, exceptions propagate immediately.
    """

    def __init__(
        self,
        sinks: list[MarkerSink] | None = None,
        *,
        strict: bool = False,
    ) -> None:
        self._sinks: list[MarkerSink] = list(sinks) if sinks else []
        self._strict = strict
        self._failures: Counter[tuple[str, Channel]] = Counter()

    @property
    def active(self) -> bool:
        """True if there is at least one registered sink."""
        return len(self._sinks) > 0

    def add_sink(self, sink: MarkerSink) -> None:
        self._sinks.append(sink)

    @property
    def failures(self) -> dict[tuple[str, Channel], int]:
        """Batches dropped by failing sinks, keyed by (sink class name, channel)."""
        return dict(self._failures)

    def publish(self, channel: Channel, markers: Sequence[Marker]) -> None:
        """Send a batch to every sink; empty batches are dropped."""
        if not markers:
            return
        batch = tuple(markers)
        for sink in self._sinks:
            try:
                sink.publish(channel, batch)
            except Exception:
                if self._strict:
                    raise
                self._failures[(type(sink).__name__, channel)] += 1
                logger.warning(
                    "MarkerSink %s failed on channel %s",
                    sink,
                    channel.value,
                    exc_info=True,
                )

    def shutdown(self) -> None:
        """Shut down every sink, then report the batches each one dropped.

        All sinks are shut down even if one fails. In strict mode the first
        shutdown error is re-raised once every sink has been visited.
        """
        errors: list[Exception] = []
        for sink in self._sinks:
            try:
                sink.shutdown()
            except Exception as e:
                if not self._strict:
                    logger.warning("MarkerSink %s failed during shutdown", sink, exc_info=True)
                errors.append(e)

        for (sink_name, channel), count in sorted(self._failures.items()):
            logger.warning(
                "MarkerSink %s dropped %d batch(es) on channel %s",
                sink_name,
                count,
                channel.value,
            )

        if errors and self._strict:
            raise errors[0]


# =============================================================================
# Sinks
# =============================================================================


@dataclass(frozen=True)
class PublishedBatch:
    channel: Channel
    markers: tuple[Marker, ...]


class RecordingSink(MarkerSink):
    """Keeps every published batch in memory.

    Useful for tests and for replaying what a viewer was sent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches: list[PublishedBatch] = []

    def publish(self, channel: Channel, markers: Sequence[Marker]) -> None:
        with self._lock:
            self._batches.append(PublishedBatch(channel, tuple(markers)))

    @property
    def batches(self) -> list[PublishedBatch]:
        with self._lock:
            return list(self._batches)

    def batches_for(self, channel: Channel) -> list[PublishedBatch]:
        return [b for b in self.batches if b.channel == channel]

    def last(self, channel: Channel) -> PublishedBatch | None:
        batches = self.batches_for(channel)
        return batches[-1] if batches else None

    def clear(self) -> None:
        with self._lock:
            self._batches.clear()


def _require_rich() -> None:
    """Raise a clear error if rich is not installed."""
    try:
        import rich  # noqa: F401
    except ImportError:
        raise ImportError(
            "The 'rich' package is required for RichConsoleSink. Install it with: pip install 'layerview[console]' or pip install rich"
        ) from None


class RichConsoleSink(MarkerSink):
    """Prints a one-table summary of every batch to a rich console.

    Args:
        console: Console to print to. Defaults to a new stderr console.
    """

    def __init__(self, console: Any = None) -> None:
        _require_rich()
        from rich.console import Console

        self._console = console if console is not None else Console(stderr=True)

    def publish(self, channel: Channel, markers: Sequence[Marker]) -> None:
        from rich.table import Table

        table = Table(title=f"{channel.value} ({len(markers)} markers)", title_justify="left")
        table.add_column("ns")
        table.add_column("id", justify="right")
        table.add_column("action")
        table.add_column("type")
        table.add_column("points", justify="right")
        for marker in markers:
            table.add_row(
                marker.namespace,
                str(marker.id),
                marker.action.value,
                marker.kind.value if marker.kind else "-",
                str(len(marker.points)),
            )
        self._console.print(table)
