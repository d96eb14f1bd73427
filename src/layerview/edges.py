"""Inter-layer edge batches, one line list per source layer."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from layerview.attributes import Vector3, semantic_color
from layerview.colormap import RGBA, ZERO_COLOR, layer_z_offset, make_color, offset_z
from layerview.config import LayerConfig, VisualizerConfig
from layerview.factory import GRAPH_EDGES_NAMESPACE
from layerview.graph import SceneGraphView
from layerview.markers import Marker, MarkerKind, make_delete_marker

logger = logging.getLogger(__name__)


@dataclass
class _EdgeBatch:
    """Line list being filled for one source layer."""

    layer_id: int
    config: LayerConfig
    retract: bool = False
    since_last_insertion: int = 0
    colors_valid: bool = True
    points: list[Vector3] = field(default_factory=list)
    colors: list[RGBA] = field(default_factory=list)

    def accept_next(self) -> bool:
        """Advance the down-sampling counter; True if this edge is drawn."""
        if self.since_last_insertion >= self.config.interlayer_edge_insertion_skip:
            self.since_last_insertion = 0
            return True
        self.since_last_insertion += 1
        return False

    def to_marker(self) -> Marker:
        if self.retract:
            return make_delete_marker(GRAPH_EDGES_NAMESPACE, self.layer_id)

        colors = self.colors
        if not self.colors_valid:
            neutral = make_color(ZERO_COLOR, self.config.interlayer_edge_alpha)
            colors = [neutral] * len(self.points)

        return Marker(
            namespace=GRAPH_EDGES_NAMESPACE,
            id=self.layer_id,
            kind=MarkerKind.LINE_LIST,
            scale=(self.config.interlayer_edge_scale, 0.0, 0.0),
            points=tuple(self.points),
            colors=tuple(colors),
        )


def make_graph_edge_markers(
    graph: SceneGraphView,
    configs: Mapping[int, LayerConfig],
    visualizer_config: VisualizerConfig,
) -> list[Marker]:
    """Build one inter-layer edge marker per source layer.

    The batch for a source layer is retracted as a whole when the target
    layer of its first edge is hidden. This only holds up while
    inter-layer edges connect adjacent layers. Individual edges touching a
    hidden layer are dropped. Drawn edges are down-sampled per source layer
    by ``interlayer_edge_insertion_skip``.

    Returns:
        Markers ordered by source layer id
    """
    batches: dict[int, _EdgeBatch] = {}
    missing_configs: set[int] = set()

    for edge in graph.interlayer_edges():
        source = graph.get_node(edge.source)
        target = graph.get_node(edge.target)
        if source is None or target is None:
            logger.warning("Inter-layer edge %s -> %s references a missing node", edge.source, edge.target)
            continue

        source_config = configs.get(source.layer)
        target_config = configs.get(target.layer)
        if source_config is None or target_config is None:
            for layer_id, cfg in ((source.layer, source_config), (target.layer, target_config)):
                if cfg is None and layer_id not in missing_configs:
                    missing_configs.add(layer_id)
                    logger.warning("Failed to find config for layer %s; skipping its inter-layer edges", layer_id)
            continue

        batch = batches.get(source.layer)
        if batch is None:
            batch = _EdgeBatch(source.layer, source_config)
            batch.retract = not source_config.visualize or not target_config.visualize
            batches[source.layer] = batch

        if not source_config.visualize or not target_config.visualize:
            continue
        if not batch.accept_next():
            continue

        batch.points.append(offset_z(source.position, layer_z_offset(source_config, visualizer_config)))
        batch.points.append(offset_z(target.position, layer_z_offset(target_config, visualizer_config)))

        color = ZERO_COLOR
        if source_config.interlayer_edge_use_color:
            endpoint = source if source_config.use_edge_source else target
            endpoint_color = semantic_color(endpoint.attributes)
            if endpoint_color is None:
                if batch.colors_valid:
                    logger.warning(
                        "Node %s has no semantic color; drawing inter-layer edges of layer %s without color",
                        endpoint.id,
                        source.layer,
                    )
                batch.colors_valid = False
            else:
                color = endpoint_color

        rgba = make_color(color, source_config.interlayer_edge_alpha)
        batch.colors.extend((rgba, rgba))

    return [batches[layer_id].to_marker() for layer_id in sorted(batches)]
