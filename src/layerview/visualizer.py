"""Redraw controller for layered scene graphs.

``SceneGraphVisualizer`` owns the current graph snapshot and the style
configuration, rebuilds every marker when something changed, and keeps
the viewer in sync: any marker published by the previous redraw that is
not re-added gets an explicit retraction.

Two threads touch a visualizer: the redraw loop started by :meth:`start`
(or whoever calls :meth:`tick`), and configuration callbacks. The
configuration tables, dirty flag and graph reference sit behind one lock.
A second lock serializes publishing, so a :meth:`clear` never interleaves
with the dispatch of a redraw. Snapshots are numbered; a redraw whose
snapshot is older than the last published one is dropped, so overlapping
ticks never leave the viewer on stale state.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from layerview.config import (
    ControllerSettings,
    LayerConfig,
    StyleSettings,
    VisualizerConfig,
    default_layer_configs,
)
from layerview.edges import make_graph_edge_markers
from layerview.factory import (
    CENTROIDS_NAMESPACE,
    MESH_EDGES_NAMESPACE,
    bounding_box_namespace,
    label_namespace,
    make_bounding_box_marker,
    make_centroid_marker,
    make_layer_edges_marker,
    make_mesh_edges_marker,
    make_text_marker,
)
from layerview.graph import SceneGraphNode, SceneGraphView
from layerview.markers import (
    Marker,
    MarkerKey,
    MarkerKind,
    make_delete_all_marker,
    make_delete_marker,
)
from layerview.sinks import Channel, MarkerDispatcher, MarkerSink

logger = logging.getLogger(__name__)

_LIST_KINDS = frozenset({MarkerKind.SPHERE_LIST, MarkerKind.CUBE_LIST, MarkerKind.LINE_LIST})


@dataclass(frozen=True)
class _Snapshot:
    """Consistent view of the shared state taken at the start of a redraw."""

    graph: SceneGraphView
    visualizer_config: VisualizerConfig
    layer_configs: dict[int, LayerConfig]
    generation: int
    sequence: int


class SceneGraphVisualizer:
    """Turns a scene graph into marker batches on five output channels.

    Args:
        layer_ids: Layers to create default configurations for
        sinks: Receivers of the published marker batches
        visualizer_config: Initial global style
        layer_configs: Initial per-layer styles, overriding the defaults
        settings: World frame and redraw period
        clock: Source of marker timestamps
        strict: Propagate sink failures instead of logging them

    Example::

        sink = RecordingSink()
        viz = SceneGraphVisualizer([2, 3], [sink])
        viz.set_graph(graph)
        viz.tick()  # True: one redraw published to sink
    """

    def __init__(
        self,
        layer_ids: Iterable[int],
        sinks: list[MarkerSink] | None = None,
        *,
        visualizer_config: VisualizerConfig | None = None,
        layer_configs: Mapping[int, LayerConfig] | None = None,
        settings: ControllerSettings | None = None,
        clock: Callable[[], float] = time.time,
        strict: bool = False,
    ) -> None:
        self._settings = settings or ControllerSettings()
        self._dispatcher = MarkerDispatcher(sinks, strict=strict)
        self._clock = clock

        self._lock = threading.Lock()
        self._graph: SceneGraphView | None = None
        self._need_redraw = False
        self._visualizer_config = visualizer_config or VisualizerConfig()
        self._layer_configs = default_layer_configs(layer_ids)
        if layer_configs:
            self._layer_configs.update(layer_configs)

        self._generation = 0
        self._snapshot_sequence = 0
        self._publish_lock = threading.Lock()
        self._published_sequence = 0
        self._published: dict[Channel, set[MarkerKey]] = {channel: set() for channel in Channel}

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_settings(
        cls,
        layer_ids: Iterable[int],
        settings: StyleSettings,
        sinks: list[MarkerSink] | None = None,
        **kwargs,
    ) -> SceneGraphVisualizer:
        """Build a visualizer from settings returned by :func:`layerview.config.load_config`."""
        return cls(
            layer_ids,
            sinks,
            visualizer_config=settings.visualizer,
            layer_configs=settings.layers,
            settings=settings.controller,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Shared state
    # ------------------------------------------------------------------

    @property
    def world_frame(self) -> str:
        return self._settings.world_frame

    @property
    def needs_redraw(self) -> bool:
        with self._lock:
            return self._need_redraw

    @property
    def visualizer_config(self) -> VisualizerConfig:
        with self._lock:
            return self._visualizer_config

    def layer_config(self, layer_id: int) -> LayerConfig | None:
        with self._lock:
            return self._layer_configs.get(layer_id)

    def layer_configs(self) -> dict[int, LayerConfig]:
        with self._lock:
            return dict(self._layer_configs)

    def add_sink(self, sink: MarkerSink) -> None:
        with self._publish_lock:
            self._dispatcher.add_sink(sink)

    def set_graph(self, graph: SceneGraphView | None) -> bool:
        """Replace the graph to draw.

        Returns:
            False if the graph was missing or empty and has been ignored
        """
        if graph is None or graph.is_empty():
            logger.warning("Request to visualize empty scene graph, skipping.")
            return False
        with self._lock:
            self._graph = graph
            self._need_redraw = True
        return True

    def on_global_config_update(self, config: VisualizerConfig) -> None:
        """Replace the global style. Safe to call from any thread."""
        with self._lock:
            self._visualizer_config = config
            self._need_redraw = True

    def on_layer_config_update(self, layer_id: int, config: LayerConfig) -> None:
        """Replace the style of one layer. Safe to call from any thread."""
        with self._lock:
            self._layer_configs[layer_id] = config
            self._need_redraw = True

    # ------------------------------------------------------------------
    # Redraw
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """Rebuild and publish every marker if anything changed.

        Returns:
            True if a redraw happened
        """
        snapshot = self._take_snapshot()
        if snapshot is None:
            return False

        built = self._build_markers(snapshot)

        with self._publish_lock:
            with self._lock:
                cleared = snapshot.generation != self._generation
            if cleared:
                logger.debug("Visualizer was cleared during redraw; dropping it")
                return False
            if snapshot.sequence < self._published_sequence:
                logger.debug(
                    "Redraw %s superseded by redraw %s; dropping it",
                    snapshot.sequence,
                    self._published_sequence,
                )
                return False
            self._published_sequence = snapshot.sequence
            batches, added = _reconcile(built, self._published)
            self._published = added

            stamp = self._clock()
            for channel in Channel:
                markers = [m.stamped(self.world_frame, stamp) for m in batches.get(channel, ())]
                self._dispatcher.publish(channel, markers)

        logger.debug(
            "Redraw published %s",
            {channel.value: len(markers) for channel, markers in batches.items() if markers},
        )
        return True

    redraw = tick

    def clear(self) -> None:
        """Forget the graph and wipe every channel of the viewer."""
        with self._lock:
            self._graph = None
            self._need_redraw = False
            self._generation += 1

        with self._publish_lock:
            self._published = {channel: set() for channel in Channel}
            stamp = self._clock()
            for channel in Channel:
                marker = make_delete_all_marker().stamped(self.world_frame, stamp)
                self._dispatcher.publish(channel, [marker])

    def _take_snapshot(self) -> _Snapshot | None:
        with self._lock:
            if self._graph is None or not self._need_redraw:
                return None
            self._need_redraw = False
            graph = self._graph
            visualizer_config = self._visualizer_config
            layer_configs = dict(self._layer_configs)
            generation = self._generation
            self._snapshot_sequence += 1
            sequence = self._snapshot_sequence
        return _Snapshot(graph, visualizer_config, layer_configs, generation, sequence)

    def _build_markers(self, snapshot: _Snapshot) -> dict[Channel, list[Marker]]:
        graph = snapshot.graph
        visualizer_config = snapshot.visualizer_config
        configs = snapshot.layer_configs
        batches: dict[Channel, list[Marker]] = {channel: [] for channel in Channel}

        missing = [layer_id for layer_id in graph.layer_ids() if layer_id not in configs]
        for layer_id in missing:
            logger.warning("Failed to find config for layer %s", layer_id)

        for layer_id in graph.layer_ids():
            config = configs.get(layer_id)
            if config is None:
                continue
            nodes = list(graph.layer_nodes(layer_id))

            batches[Channel.CENTROIDS].append(
                self._centroids(layer_id, nodes, config, visualizer_config)
            )
            batches[Channel.LABELS].extend(
                self._labels(layer_id, nodes, config, visualizer_config)
            )
            batches[Channel.BOUNDING_BOXES].extend(
                self._bounding_boxes(layer_id, nodes, config, visualizer_config)
            )
            if layer_id == visualizer_config.objects_layer:
                batches[Channel.MESH_EDGES].append(
                    self._mesh_edges(graph, layer_id, config, visualizer_config)
                )

        edges = batches[Channel.GRAPH_EDGES]
        edges.extend(make_graph_edge_markers(graph, configs, visualizer_config))
        for layer_id in graph.layer_ids():
            config = configs.get(layer_id)
            if config is None or graph.num_layer_edges(layer_id) == 0:
                continue
            edges.append(make_layer_edges_marker(config, graph, layer_id, visualizer_config))

        return batches

    @staticmethod
    def _centroids(
        layer_id: int,
        nodes: list[SceneGraphNode],
        config: LayerConfig,
        visualizer_config: VisualizerConfig,
    ) -> Marker:
        if not config.visualize:
            return make_delete_marker(CENTROIDS_NAMESPACE, layer_id)
        return make_centroid_marker(config, layer_id, nodes, visualizer_config)

    @staticmethod
    def _labels(
        layer_id: int,
        nodes: list[SceneGraphNode],
        config: LayerConfig,
        visualizer_config: VisualizerConfig,
    ) -> list[Marker]:
        ns = label_namespace(layer_id)
        if not (config.visualize and config.use_label):
            return [make_delete_marker(ns, node.id) for node in nodes]
        return [make_text_marker(config, node, visualizer_config, ns) for node in nodes]

    @staticmethod
    def _bounding_boxes(
        layer_id: int,
        nodes: list[SceneGraphNode],
        config: LayerConfig,
        visualizer_config: VisualizerConfig,
    ) -> list[Marker]:
        ns = bounding_box_namespace(layer_id)
        if not (config.visualize and config.use_bounding_box):
            return [make_delete_marker(ns, node.id) for node in nodes]

        markers = []
        for node in nodes:
            marker = make_bounding_box_marker(config, node, visualizer_config, ns)
            if marker is None:
                logger.error("Bounding boxes enabled for non-object layer %s", layer_id)
                return []
            markers.append(marker)
        return markers

    @staticmethod
    def _mesh_edges(
        graph: SceneGraphView,
        layer_id: int,
        config: LayerConfig,
        visualizer_config: VisualizerConfig,
    ) -> Marker:
        if not config.visualize:
            return make_delete_marker(MESH_EDGES_NAMESPACE, layer_id)
        return make_mesh_edges_marker(config, visualizer_config, graph, layer_id)

    # ------------------------------------------------------------------
    # Redraw loop
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start calling :meth:`tick` every ``loop_period`` seconds in a daemon thread.

        A loop that is still winding down after :meth:`stop` is joined first.
        """
        if self.running:
            if not self._stop_event.is_set():
                return
            self._thread.join()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="layerview-redraw",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the redraw loop and wait for the current tick to finish.

        If the loop is still running after ``timeout``, it stays registered
        and :attr:`running` remains True until it exits.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Redraw loop did not stop within %s s", timeout)
            return
        self._thread = None

    def close(self) -> None:
        """Stop the loop and shut down every sink."""
        self.stop()
        self._dispatcher.shutdown()

    def __enter__(self) -> SceneGraphVisualizer:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _run(self) -> None:
        period = self._settings.loop_period
        while not self._stop_event.wait(period):
            try:
                self.tick()
            except Exception:
                logger.exception("Scene graph redraw failed")


def _reconcile(
    built: Mapping[Channel, list[Marker]],
    published: Mapping[Channel, set[MarkerKey]],
) -> tuple[dict[Channel, list[Marker]], dict[Channel, set[MarkerKey]]]:
    """Diff this redraw against the keys the viewer currently holds.

    * list markers with nothing to draw are not added
    * retractions of keys the viewer does not hold are dropped
    * keys held from the previous redraw and not re-added are retracted

    Returns:
        Markers to publish per channel, and the keys they leave on the viewer
    """
    batches: dict[Channel, list[Marker]] = {}
    added: dict[Channel, set[MarkerKey]] = {}

    for channel in Channel:
        previous = published.get(channel, set())
        adds = [
            m for m in built.get(channel, ())
            if m.is_add and not (m.kind in _LIST_KINDS and not m.points)
        ]
        add_keys = {m.key for m in adds}

        out: list[Marker] = []
        retracted: set[MarkerKey] = set()
        for marker in built.get(channel, ()):
            if marker.is_add:
                if marker.key in add_keys and (marker.points or marker.kind not in _LIST_KINDS):
                    out.append(marker)
                continue
            if marker.key in previous and marker.key not in add_keys and marker.key not in retracted:
                retracted.add(marker.key)
                out.append(marker)

        for key in sorted(previous - add_keys - retracted):
            out.append(make_delete_marker(*key))

        batches[channel] = out
        added[channel] = add_keys

    return batches, added
