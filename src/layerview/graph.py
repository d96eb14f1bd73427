"""Read-only scene graph surface consumed by the marker builders.

``SceneGraphView`` is everything the visualizer needs from a graph.
``SceneGraph`` is a small networkx-backed implementation of it, used by
callers that don't bring their own graph store, and by the tests.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import networkx as nx

from layerview.attributes import NodeAttributes, Vector3

MeshPoints = Sequence[Vector3]


@dataclass(frozen=True)
class SceneGraphNode:
    """A node as seen by the visualizer."""

    id: int
    layer: int
    attributes: NodeAttributes

    @property
    def position(self) -> Vector3:
        return self.attributes.position


@dataclass(frozen=True)
class SceneGraphEdge:
    """Directed edge; for inter-layer edges the source is the parent."""

    source: int
    target: int


@runtime_checkable
class SceneGraphView(Protocol):
    """Query surface of a layered scene graph."""

    def layer_ids(self) -> list[int]:
        """Layer ids in ascending order."""
        ...

    def layer_nodes(self, layer_id: int) -> Iterator[SceneGraphNode]: ...

    def layer_edges(self, layer_id: int) -> Iterator[SceneGraphEdge]: ...

    def num_layer_edges(self, layer_id: int) -> int: ...

    def interlayer_edges(self) -> Iterator[SceneGraphEdge]: ...

    def get_node(self, node_id: int) -> SceneGraphNode | None: ...

    def mesh_points(self, node_id: int) -> MeshPoints | None: ...

    def is_empty(self) -> bool: ...


class SceneGraph:
    """Layered scene graph stored in a single networkx graph.

    Nodes carry ``layer`` and ``attributes`` data; edges carry ``source``
    so the direction of inter-layer edges survives the undirected storage.
    Layers must be registered up front.

    Examples:
        >>> graph = SceneGraph([2, 3])
        >>> graph.add_node(1, 2, NodeAttributes(position=(0.0, 0.0, 0.0)))
        >>> graph.layer_ids()
        [2, 3]
    """

    def __init__(self, layer_ids: Iterable[int] = ()) -> None:
        self._graph = nx.Graph()
        self._layers: dict[int, list[int]] = {layer_id: [] for layer_id in sorted(layer_ids)}
        self._layer_edges: dict[int, list[SceneGraphEdge]] = {layer_id: [] for layer_id in self._layers}
        self._interlayer_edges: list[SceneGraphEdge] = []
        self._mesh_points: dict[int, list[Vector3]] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, node_id: int, layer_id: int, attributes: NodeAttributes) -> None:
        if layer_id not in self._layers:
            raise KeyError(f"Unknown layer {layer_id}")
        if node_id in self._graph:
            raise ValueError(f"Node {node_id} already exists")
        self._graph.add_node(node_id, layer=layer_id, attributes=attributes)
        self._layers[layer_id].append(node_id)

    def add_edge(self, source: int, target: int) -> None:
        """Connect two existing nodes; the layers of the endpoints decide the edge kind."""
        for node_id in (source, target):
            if node_id not in self._graph:
                raise KeyError(f"Unknown node {node_id}")
        if self._graph.has_edge(source, target):
            return
        self._graph.add_edge(source, target, source=source)

        edge = SceneGraphEdge(source, target)
        source_layer = self._graph.nodes[source]["layer"]
        if source_layer == self._graph.nodes[target]["layer"]:
            self._layer_edges[source_layer].append(edge)
        else:
            self._interlayer_edges.append(edge)

    def set_mesh_points(self, node_id: int, points: Iterable[Vector3]) -> None:
        if node_id not in self._graph:
            raise KeyError(f"Unknown node {node_id}")
        self._mesh_points[node_id] = [tuple(p) for p in points]

    # ------------------------------------------------------------------
    # SceneGraphView
    # ------------------------------------------------------------------

    def layer_ids(self) -> list[int]:
        return list(self._layers)

    def layer_nodes(self, layer_id: int) -> Iterator[SceneGraphNode]:
        for node_id in self._layers.get(layer_id, ()):
            yield self._make_node(node_id)

    def layer_edges(self, layer_id: int) -> Iterator[SceneGraphEdge]:
        return iter(self._layer_edges.get(layer_id, ()))

    def num_layer_edges(self, layer_id: int) -> int:
        return len(self._layer_edges.get(layer_id, ()))

    def interlayer_edges(self) -> Iterator[SceneGraphEdge]:
        return iter(self._interlayer_edges)

    def get_node(self, node_id: int) -> SceneGraphNode | None:
        if node_id not in self._graph:
            return None
        return self._make_node(node_id)

    def mesh_points(self, node_id: int) -> MeshPoints | None:
        return self._mesh_points.get(node_id)

    def is_empty(self) -> bool:
        return self._graph.number_of_nodes() == 0

    # ------------------------------------------------------------------

    def num_nodes(self) -> int:
        return self._graph.number_of_nodes()

    def to_networkx(self) -> nx.Graph:
        """Copy of the underlying networkx graph."""
        return self._graph.copy()

    def _make_node(self, node_id: int) -> SceneGraphNode:
        data = self._graph.nodes[node_id]
        return SceneGraphNode(node_id, data["layer"], data["attributes"])
