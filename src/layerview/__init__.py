"""layerview - marker rendering for layered 3D scene graphs."""

from layerview.attributes import (
    BoundingBox,
    BoundingBoxType,
    NodeAttributes,
    NodeSymbol,
    ObjectNodeAttributes,
    PlaceNodeAttributes,
    SemanticNodeAttributes,
)
from layerview.colormap import (
    HlsColorMapConfig,
    color_for_continuous_attribute,
    layer_z_offset,
    normalize_ratio,
)
from layerview.config import (
    ControllerSettings,
    DsgLayers,
    LayerConfig,
    StyleSettings,
    VisualizerConfig,
    load_config,
    load_config_file,
)
from layerview.edges import make_graph_edge_markers
from layerview.exceptions import AttributeShapeError, StyleConfigError
from layerview.graph import SceneGraph, SceneGraphEdge, SceneGraphNode, SceneGraphView
from layerview.markers import Marker, MarkerAction, MarkerKind
from layerview.sinks import (
    Channel,
    MarkerDispatcher,
    MarkerSink,
    RecordingSink,
    RichConsoleSink,
)
from layerview.visualizer import SceneGraphVisualizer

__all__ = [
    # Controller
    "SceneGraphVisualizer",
    # Graph
    "SceneGraph",
    "SceneGraphView",
    "SceneGraphNode",
    "SceneGraphEdge",
    "NodeAttributes",
    "SemanticNodeAttributes",
    "ObjectNodeAttributes",
    "PlaceNodeAttributes",
    "BoundingBox",
    "BoundingBoxType",
    "NodeSymbol",
    # Config
    "VisualizerConfig",
    "LayerConfig",
    "ControllerSettings",
    "StyleSettings",
    "DsgLayers",
    "load_config",
    "load_config_file",
    # Markers
    "Marker",
    "MarkerAction",
    "MarkerKind",
    "make_graph_edge_markers",
    # Color
    "HlsColorMapConfig",
    "normalize_ratio",
    "color_for_continuous_attribute",
    "layer_z_offset",
    # Sinks
    "Channel",
    "MarkerSink",
    "MarkerDispatcher",
    "RecordingSink",
    "RichConsoleSink",
    # Errors
    "StyleConfigError",
    "AttributeShapeError",
]
