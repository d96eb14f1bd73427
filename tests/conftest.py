"""Shared fixtures: small scene graphs and a recording sink."""

import pytest

from layerview.attributes import (
    BoundingBox,
    NodeAttributes,
    ObjectNodeAttributes,
    PlaceNodeAttributes,
    SemanticNodeAttributes,
)
from layerview.graph import SceneGraph
from layerview.sinks import RecordingSink
from layerview.visualizer import SceneGraphVisualizer

OBJECTS = 2
PLACES = 3
ROOMS = 4

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)


def semantic(x, y, z, color=GREEN):
    return SemanticNodeAttributes(position=(x, y, z), color=color)


def obj(x, y, z, color=BLUE, size=1.0):
    half = size / 2.0
    box = BoundingBox.from_extents((x - half, y - half, z - half), (x + half, y + half, z + half))
    return ObjectNodeAttributes(position=(x, y, z), color=color, bounding_box=box)


def place(x, y, z, distance):
    return PlaceNodeAttributes(position=(x, y, z), color=RED, distance=distance)


def plain(x, y, z):
    return NodeAttributes(position=(x, y, z))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def three_node_graph():
    """Layer 2 with three semantic nodes and no edges."""
    graph = SceneGraph([OBJECTS])
    graph.add_node(1, OBJECTS, semantic(0.0, 0.0, 0.0, RED))
    graph.add_node(2, OBJECTS, semantic(1.0, 0.0, 0.0, GREEN))
    graph.add_node(3, OBJECTS, semantic(0.0, 1.0, 0.0, BLUE))
    return graph


@pytest.fixture
def layered_graph():
    """Objects, places and rooms with intra- and inter-layer edges and a mesh cloud."""
    graph = SceneGraph([OBJECTS, PLACES, ROOMS])
    graph.add_node(10, OBJECTS, obj(0.0, 0.0, 0.0))
    graph.add_node(11, OBJECTS, obj(2.0, 0.0, 0.0))
    graph.add_node(20, PLACES, place(0.0, 0.0, 1.0, 1.0))
    graph.add_node(21, PLACES, place(2.0, 0.0, 1.0, 2.0))
    graph.add_node(22, PLACES, place(4.0, 0.0, 1.0, 3.0))
    graph.add_node(30, ROOMS, semantic(2.0, 0.0, 2.0))

    graph.add_edge(20, 21)
    graph.add_edge(21, 22)
    graph.add_edge(20, 10)
    graph.add_edge(21, 11)
    graph.add_edge(30, 20)
    graph.add_edge(30, 21)
    graph.add_edge(30, 22)

    graph.set_mesh_points(10, [(0.0, 0.0, -1.0), (0.5, 0.0, -1.0), (1.0, 0.0, -1.0)])
    return graph


@pytest.fixture
def make_visualizer(sink):
    """Factory for a visualizer publishing to the ``sink`` fixture at a fixed time."""

    def _make(layer_ids=(OBJECTS, PLACES, ROOMS), **kwargs):
        kwargs.setdefault("clock", lambda: 123.5)
        return SceneGraphVisualizer(layer_ids, [sink], **kwargs)

    return _make
