"""Builders that turn one layer, node or edge set into one marker.

Builders are stateless: every input comes in as an argument and nothing
is cached between calls. Attribute-shape problems are logged and degraded
(alarm or neutral colors, or a ``None`` result), never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from itertools import islice

from layerview.attributes import (
    IDENTITY_ROTATION,
    BoundingBoxType,
    Vector3,
    node_label,
    place_distance,
    require_bounding_box,
    semantic_color,
)
from layerview.colormap import (
    ALARM_COLOR,
    RGB,
    ZERO_COLOR,
    color_for_continuous_attribute,
    layer_z_offset,
    make_color,
    offset_z,
)
from layerview.config import LayerConfig, VisualizerConfig
from layerview.exceptions import AttributeShapeError
from layerview.graph import SceneGraphNode, SceneGraphView
from layerview.markers import Marker, MarkerKind, Pose, make_delete_marker

logger = logging.getLogger(__name__)

CENTROIDS_NAMESPACE = "layer_centroids"
MESH_EDGES_NAMESPACE = "mesh_layer_edges"
GRAPH_EDGES_NAMESPACE = "graph_edges"


def label_namespace(layer_id: int) -> str:
    return f"layer_{layer_id}_text"


def bounding_box_namespace(layer_id: int) -> str:
    return f"layer_{layer_id}_bounding_boxes"


def layer_edges_namespace(layer_id: int) -> str:
    return f"layer_{layer_id}_edges"


# =============================================================================
# Per-node markers
# =============================================================================


def make_bounding_box_marker(
    config: LayerConfig,
    node: SceneGraphNode,
    visualizer_config: VisualizerConfig,
    namespace: str,
) -> Marker | None:
    """Box around an object node.

    Returns None (and logs) if the node has no bounding box.
    """
    try:
        box = require_bounding_box(node.id, node.attributes)
    except AttributeShapeError as e:
        logger.error("Cannot draw bounding box: %s", e)
        return None

    if box.type == BoundingBoxType.OBB:
        orientation = box.world_R_center
    else:
        orientation = IDENTITY_ROTATION
    position = offset_z(box.world_P_center, layer_z_offset(config, visualizer_config))

    # An object node is always semantic, so the color is present.
    color = semantic_color(node.attributes) or ZERO_COLOR
    return Marker(
        namespace=namespace,
        id=node.id,
        kind=MarkerKind.CUBE,
        pose=Pose(position, orientation),
        scale=box.dimensions,
        color=make_color(color, config.bounding_box_alpha),
    )


def make_text_marker(
    config: LayerConfig,
    node: SceneGraphNode,
    visualizer_config: VisualizerConfig,
    namespace: str,
) -> Marker:
    """Viewer-facing label above a node."""
    dz = layer_z_offset(config, visualizer_config) + config.label_height
    return Marker(
        namespace=namespace,
        id=node.id,
        kind=MarkerKind.TEXT_VIEW_FACING,
        pose=Pose(offset_z(node.position, dz)),
        scale=(0.0, 0.0, config.label_scale),
        color=make_color(ZERO_COLOR),
        text=node_label(node.id),
    )


# =============================================================================
# Per-layer markers
# =============================================================================


def make_centroid_marker(
    config: LayerConfig,
    layer_id: int,
    nodes: Iterable[SceneGraphNode],
    visualizer_config: VisualizerConfig,
    layer_color: RGB | None = None,
    namespace: str = CENTROIDS_NAMESPACE,
) -> Marker:
    """One point per node of a layer, with a parallel color per point.

    Color policy, first match wins:

    1. ``layer_color`` if given
    2. alarm red once any earlier node failed to provide a color
    3. colormap over the place distance, for the places layer when
       ``color_places_by_distance`` is on
    4. the node's semantic color

    A node missing the attribute needed by 3 or 4 turns itself and every
    following node alarm red.
    """
    dz = layer_z_offset(config, visualizer_config)
    color_by_distance = (
        visualizer_config.color_places_by_distance
        and layer_id == visualizer_config.places_layer
    )
    colormap = visualizer_config.places_colormap

    points: list[Vector3] = []
    colors = []
    node_colors_valid = True
    for node in nodes:
        points.append(offset_z(node.position, dz))

        if layer_color is not None:
            desired = layer_color
        elif not node_colors_valid:
            desired = ALARM_COLOR
        elif color_by_distance:
            distance = place_distance(node.attributes)
            if distance is None:
                desired = None
            else:
                desired = color_for_continuous_attribute(
                    colormap,
                    visualizer_config.places_min_distance,
                    visualizer_config.places_max_distance,
                    distance,
                )
        else:
            desired = semantic_color(node.attributes)

        if desired is None:
            logger.warning(
                "Node %s in layer %s has no usable color (%s); coloring the rest of the layer red",
                node.id,
                layer_id,
                type(node.attributes).__name__,
            )
            node_colors_valid = False
            desired = ALARM_COLOR

        colors.append(make_color(desired, config.marker_alpha))

    kind = MarkerKind.SPHERE_LIST if config.use_sphere_marker else MarkerKind.CUBE_LIST
    return Marker(
        namespace=namespace,
        id=layer_id,
        kind=kind,
        scale=(config.marker_scale,) * 3,
        points=tuple(points),
        colors=tuple(colors),
    )


def make_mesh_edges_marker(
    config: LayerConfig,
    visualizer_config: VisualizerConfig,
    graph: SceneGraphView,
    layer_id: int,
    namespace: str = MESH_EDGES_NAMESPACE,
) -> Marker:
    """Lines from each node down to the mesh vertices it owns.

    Each node gets one segment from its centroid to a breakout point, then
    one segment from the breakout point to every
    ``interlayer_edge_insertion_skip + 1``-th mesh vertex. Nodes without
    mesh vertices are skipped.
    """
    dz = layer_z_offset(config, visualizer_config)
    stride = config.interlayer_edge_insertion_skip + 1
    mesh_dz = 0.0 if visualizer_config.collapse_layers else visualizer_config.mesh_layer_offset

    points: list[Vector3] = []
    colors = []
    for node in graph.layer_nodes(layer_id):
        mesh_points = graph.mesh_points(node.id)
        if not mesh_points:
            continue

        node_color = semantic_color(node.attributes)
        if config.interlayer_edge_use_color and node_color is not None:
            color = make_color(node_color, config.interlayer_edge_alpha)
        else:
            color = make_color(ZERO_COLOR, config.interlayer_edge_alpha)

        breakout = offset_z(node.position, visualizer_config.mesh_edge_break_ratio * dz)
        points.extend((offset_z(node.position, dz), breakout))
        colors.extend((color, color))

        for vertex in islice(mesh_points, 0, None, stride):
            points.extend((breakout, offset_z(vertex, mesh_dz)))
            colors.extend((color, color))

    return Marker(
        namespace=namespace,
        id=layer_id,
        kind=MarkerKind.LINE_LIST,
        scale=(config.interlayer_edge_scale, 0.0, 0.0),
        points=tuple(points),
        colors=tuple(colors),
    )


def make_layer_edges_marker(
    config: LayerConfig,
    graph: SceneGraphView,
    layer_id: int,
    visualizer_config: VisualizerConfig,
    color: RGB = ZERO_COLOR,
) -> Marker:
    """Edges inside a layer as one line list.

    Every ``intralayer_edge_insertion_skip + 1``-th edge is drawn. An
    invisible layer yields a retraction instead.
    """
    namespace = layer_edges_namespace(layer_id)
    if not config.visualize:
        return make_delete_marker(namespace, 0)

    dz = layer_z_offset(config, visualizer_config)
    stride = config.intralayer_edge_insertion_skip + 1

    points: list[Vector3] = []
    for edge in islice(graph.layer_edges(layer_id), 0, None, stride):
        source = graph.get_node(edge.source)
        target = graph.get_node(edge.target)
        if source is None or target is None:
            logger.warning("Edge %s -> %s in layer %s references a missing node", edge.source, edge.target, layer_id)
            continue
        points.extend((offset_z(source.position, dz), offset_z(target.position, dz)))

    return Marker(
        namespace=namespace,
        id=0,
        kind=MarkerKind.LINE_LIST,
        scale=(config.intralayer_edge_scale, 0.0, 0.0),
        color=make_color(color, config.intralayer_edge_alpha),
        points=tuple(points),
    )
