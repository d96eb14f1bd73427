"""Tests for the redraw controller: redraw policy, reconciliation and the loop."""

import dataclasses
import logging
import threading
import time

import pytest

from layerview.colormap import interpolate_color_map, make_color
from layerview.config import ControllerSettings, LayerConfig, VisualizerConfig, parse_settings
from layerview.graph import SceneGraph
from layerview.markers import MarkerAction, MarkerKind
from layerview.sinks import Channel, MarkerSink, RecordingSink
from layerview.visualizer import SceneGraphVisualizer

from tests.conftest import OBJECTS, PLACES, ROOMS, obj, semantic


def _keys(batch, action=None):
    return {m.key for m in batch.markers if action is None or m.action == action}


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class _ShutdownSink(MarkerSink):
    def __init__(self):
        self.shutdown_called = False

    def shutdown(self):
        self.shutdown_called = True


class _ExplodingSink(MarkerSink):
    def publish(self, channel, markers):
        raise RuntimeError("viewer gone")


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_single_layer_publishes_one_centroid_batch(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)

        assert viz.tick() is True
        assert len(sink.batches) == 1
        batch = sink.batches[0]
        assert batch.channel == Channel.CENTROIDS
        assert len(batch.markers) == 1
        centroid = batch.markers[0]
        assert centroid.key == ("layer_centroids", OBJECTS)
        assert len(centroid.points) == 3
        assert len(centroid.colors) == 3

    def test_hiding_layer_retracts_centroids(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)
        viz.tick()
        sink.clear()

        viz.on_layer_config_update(OBJECTS, LayerConfig(visualize=False))
        assert viz.tick() is True

        assert len(sink.batches) == 1
        batch = sink.last(Channel.CENTROIDS)
        assert len(batch.markers) == 1
        assert batch.markers[0].key == ("layer_centroids", OBJECTS)
        assert batch.markers[0].action == MarkerAction.DELETE

    def test_places_colored_at_distance_bounds(self, make_visualizer, sink, layered_graph):
        config = VisualizerConfig(places_min_distance=1.0, places_max_distance=3.0)
        viz = make_visualizer(visualizer_config=config)
        viz.set_graph(layered_graph)
        viz.tick()

        places = next(m for m in sink.last(Channel.CENTROIDS).markers if m.id == PLACES)
        cmap = config.places_colormap
        assert places.colors[0] == make_color(interpolate_color_map(cmap, 0.0))
        assert places.colors[2] == make_color(interpolate_color_map(cmap, 1.0))


# ---------------------------------------------------------------------------
# Redraw policy
# ---------------------------------------------------------------------------


class TestRedrawPolicy:
    def test_no_graph_no_redraw(self, make_visualizer, sink):
        viz = make_visualizer()
        assert viz.tick() is False
        assert sink.batches == []

    def test_second_tick_without_update_is_a_no_op(self, make_visualizer, sink, layered_graph):
        viz = make_visualizer()
        viz.set_graph(layered_graph)
        assert viz.tick() is True
        published = len(sink.batches)

        assert viz.needs_redraw is False
        assert viz.tick() is False
        assert len(sink.batches) == published

    @pytest.mark.parametrize("graph", [None, SceneGraph([OBJECTS])])
    def test_empty_graph_ignored(self, make_visualizer, sink, graph, caplog):
        viz = make_visualizer()
        with caplog.at_level(logging.WARNING, logger="layerview.visualizer"):
            assert viz.set_graph(graph) is False
        assert "empty scene graph" in caplog.text
        assert viz.needs_redraw is False
        assert viz.tick() is False

    def test_empty_graph_keeps_previous_graph(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)
        viz.tick()
        viz.set_graph(SceneGraph([OBJECTS]))

        viz.on_layer_config_update(OBJECTS, LayerConfig(marker_scale=0.5))
        assert viz.tick() is True
        assert len(sink.last(Channel.CENTROIDS).markers[0].points) == 3

    def test_global_config_update_redraws(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS, PLACES))
        viz.on_layer_config_update(OBJECTS, LayerConfig(z_offset_scale=1.0))
        viz.set_graph(three_node_graph)
        viz.tick()
        assert sink.last(Channel.CENTROIDS).markers[0].points[0][2] == 5.0

        viz.on_global_config_update(VisualizerConfig(collapse_layers=True))
        assert viz.needs_redraw
        assert viz.tick() is True
        assert sink.last(Channel.CENTROIDS).markers[0].points[0][2] == 0.0
        assert viz.visualizer_config.collapse_layers is True

    def test_markers_stamped_with_one_time_and_world_frame(self, make_visualizer, sink, layered_graph):
        viz = make_visualizer(settings=ControllerSettings(world_frame="map"))
        viz.set_graph(layered_graph)
        viz.tick()

        markers = [m for batch in sink.batches for m in batch.markers]
        assert markers
        assert {m.frame_id for m in markers} == {"map"}
        assert {m.stamp for m in markers} == {123.5}

    def test_channels_published_in_fixed_order(self, make_visualizer, sink, layered_graph):
        layers = {OBJECTS: LayerConfig(use_label=True, use_bounding_box=True)}
        viz = make_visualizer(layer_configs=layers)
        viz.set_graph(layered_graph)
        viz.tick()
        assert [b.channel for b in sink.batches] == list(Channel)


# ---------------------------------------------------------------------------
# Marker content
# ---------------------------------------------------------------------------


class TestMarkerContent:
    def test_layered_graph_first_redraw(self, make_visualizer, sink, layered_graph):
        viz = make_visualizer()
        viz.set_graph(layered_graph)
        viz.tick()

        assert _keys(sink.last(Channel.CENTROIDS)) == {
            ("layer_centroids", OBJECTS),
            ("layer_centroids", PLACES),
            ("layer_centroids", ROOMS),
        }
        assert _keys(sink.last(Channel.MESH_EDGES)) == {("mesh_layer_edges", OBJECTS)}
        assert _keys(sink.last(Channel.GRAPH_EDGES)) == {
            ("graph_edges", PLACES),
            ("graph_edges", ROOMS),
            ("layer_3_edges", 0),
        }
        assert sink.last(Channel.LABELS) is None
        assert sink.last(Channel.BOUNDING_BOXES) is None

    def test_labels_and_boxes(self, make_visualizer, sink, layered_graph):
        layers = {OBJECTS: LayerConfig(use_label=True, use_bounding_box=True)}
        viz = make_visualizer(layer_configs=layers)
        viz.set_graph(layered_graph)
        viz.tick()

        labels = sink.last(Channel.LABELS)
        assert _keys(labels) == {("layer_2_text", 10), ("layer_2_text", 11)}
        assert all(m.kind == MarkerKind.TEXT_VIEW_FACING for m in labels.markers)
        boxes = sink.last(Channel.BOUNDING_BOXES)
        assert _keys(boxes) == {("layer_2_bounding_boxes", 10), ("layer_2_bounding_boxes", 11)}

    def test_box_pass_failure_only_drops_that_layer(self, make_visualizer, sink, layered_graph, caplog):
        layers = {
            OBJECTS: LayerConfig(use_bounding_box=True),
            PLACES: LayerConfig(z_offset_scale=1.0, use_bounding_box=True),
        }
        viz = make_visualizer(layer_configs=layers)
        viz.set_graph(layered_graph)

        with caplog.at_level(logging.ERROR, logger="layerview"):
            viz.tick()

        assert _keys(sink.last(Channel.BOUNDING_BOXES)) == {
            ("layer_2_bounding_boxes", 10),
            ("layer_2_bounding_boxes", 11),
        }
        assert "non-object layer 3" in caplog.text
        assert len(sink.last(Channel.CENTROIDS).markers) == 3

    def test_box_pass_discards_partial_layer(self, make_visualizer, sink, caplog):
        graph = SceneGraph([OBJECTS])
        graph.add_node(1, OBJECTS, obj(0.0, 0.0, 0.0))
        graph.add_node(2, OBJECTS, semantic(1.0, 0.0, 0.0))
        viz = make_visualizer(layer_ids=(OBJECTS,), layer_configs={OBJECTS: LayerConfig(use_bounding_box=True)})
        viz.set_graph(graph)

        with caplog.at_level(logging.ERROR, logger="layerview"):
            viz.tick()
        assert sink.last(Channel.BOUNDING_BOXES) is None

    def test_missing_layer_config_skips_layer(self, make_visualizer, sink, layered_graph, caplog):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(layered_graph)

        with caplog.at_level(logging.WARNING, logger="layerview"):
            assert viz.tick() is True

        assert _keys(sink.last(Channel.CENTROIDS)) == {("layer_centroids", OBJECTS)}
        assert sink.last(Channel.GRAPH_EDGES) is None
        assert "Failed to find config for layer 3" in caplog.text
        assert "Failed to find config for layer 4" in caplog.text


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class TestReconciliation:
    def test_hiding_layer_retracts_every_kind_it_added(self, make_visualizer, sink, layered_graph):
        shown = LayerConfig(use_label=True, use_bounding_box=True)
        viz = make_visualizer(layer_configs={OBJECTS: shown})
        viz.set_graph(layered_graph)
        viz.tick()
        first = {channel: _keys(sink.last(channel)) for channel in Channel}
        sink.clear()

        viz.on_layer_config_update(OBJECTS, dataclasses.replace(shown, visualize=False))
        viz.tick()

        deleted = {channel: _keys(sink.last(channel), MarkerAction.DELETE) for channel in Channel}
        assert deleted[Channel.CENTROIDS] == {("layer_centroids", OBJECTS)}
        assert deleted[Channel.LABELS] == first[Channel.LABELS]
        assert deleted[Channel.BOUNDING_BOXES] == first[Channel.BOUNDING_BOXES]
        assert deleted[Channel.MESH_EDGES] == first[Channel.MESH_EDGES]
        # places -> objects edges go away with the objects layer
        assert deleted[Channel.GRAPH_EDGES] == {("graph_edges", PLACES)}

        for channel in Channel:
            batch = sink.last(channel)
            assert len(_keys(batch)) == len(batch.markers)

    def test_turning_labels_off_retracts_each_label(self, make_visualizer, sink, layered_graph):
        viz = make_visualizer(layer_configs={OBJECTS: LayerConfig(use_label=True)})
        viz.set_graph(layered_graph)
        viz.tick()

        viz.on_layer_config_update(OBJECTS, LayerConfig(use_label=False))
        viz.tick()

        labels = sink.last(Channel.LABELS)
        assert _keys(labels, MarkerAction.DELETE) == {("layer_2_text", 10), ("layer_2_text", 11)}
        assert _keys(labels, MarkerAction.ADD) == set()

    def test_retraction_sent_only_once(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)
        viz.tick()
        viz.on_layer_config_update(OBJECTS, LayerConfig(visualize=False))
        viz.tick()
        sink.clear()

        viz.on_layer_config_update(OBJECTS, LayerConfig(visualize=False, marker_scale=0.3))
        assert viz.tick() is True
        assert sink.batches == []

    def test_removed_node_is_retracted(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,), layer_configs={OBJECTS: LayerConfig(use_label=True)})
        viz.set_graph(three_node_graph)
        viz.tick()

        smaller = SceneGraph([OBJECTS])
        smaller.add_node(1, OBJECTS, semantic(0.0, 0.0, 0.0))
        viz.set_graph(smaller)
        viz.tick()

        labels = sink.last(Channel.LABELS)
        assert _keys(labels, MarkerAction.ADD) == {("layer_2_text", 1)}
        assert _keys(labels, MarkerAction.DELETE) == {("layer_2_text", 2), ("layer_2_text", 3)}

    def test_readding_after_retraction(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)
        viz.tick()
        viz.on_layer_config_update(OBJECTS, LayerConfig(visualize=False))
        viz.tick()

        viz.on_layer_config_update(OBJECTS, LayerConfig())
        viz.tick()
        centroids = sink.last(Channel.CENTROIDS)
        assert [m.action for m in centroids.markers] == [MarkerAction.ADD]


# ---------------------------------------------------------------------------
# Clear
# ---------------------------------------------------------------------------


class TestClear:
    def test_clear_wipes_every_channel(self, make_visualizer, sink, layered_graph):
        viz = make_visualizer()
        viz.set_graph(layered_graph)
        viz.tick()
        sink.clear()

        viz.clear()

        assert [b.channel for b in sink.batches] == list(Channel)
        for batch in sink.batches:
            assert len(batch.markers) == 1
            marker = batch.markers[0]
            assert marker.action == MarkerAction.DELETE_ALL
            assert marker.stamp == 123.5
            assert marker.frame_id == "world"
        assert viz.tick() is False

    def test_redraw_after_clear_starts_fresh(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)
        viz.tick()
        viz.clear()
        sink.clear()

        viz.on_layer_config_update(OBJECTS, LayerConfig(visualize=False))
        viz.set_graph(three_node_graph)
        viz.tick()
        # the viewer holds nothing, so there is nothing to retract
        assert sink.batches == []

    def test_clear_during_redraw_drops_it(self, make_visualizer, sink, three_node_graph, monkeypatch):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)
        build = viz._build_markers

        def build_then_clear(snapshot):
            batches = build(snapshot)
            viz.clear()
            return batches

        monkeypatch.setattr(viz, "_build_markers", build_then_clear)

        assert viz.tick() is False
        assert all(m.action == MarkerAction.DELETE_ALL for b in sink.batches for m in b.markers)


# ---------------------------------------------------------------------------
# Overlapping redraws
# ---------------------------------------------------------------------------


def _hold_first_build(viz, monkeypatch):
    """Make the next marker build block until ``release`` is set."""
    entered = threading.Event()
    release = threading.Event()
    build = viz._build_markers
    calls = []

    def held_build(snapshot):
        calls.append(snapshot)
        if len(calls) == 1:
            entered.set()
            release.wait(timeout=5.0)
        return build(snapshot)

    monkeypatch.setattr(viz, "_build_markers", held_build)
    return entered, release


class TestOverlappingRedraws:
    def test_older_redraw_finishing_last_is_dropped(self, make_visualizer, sink, three_node_graph, monkeypatch):
        viz = make_visualizer(layer_ids=(OBJECTS,))
        viz.set_graph(three_node_graph)
        viz.tick()

        entered, release = _hold_first_build(viz, monkeypatch)
        viz.on_layer_config_update(OBJECTS, LayerConfig(marker_scale=0.3))
        results = []
        slow = threading.Thread(target=lambda: results.append(viz.tick()))
        slow.start()
        try:
            assert entered.wait(timeout=2.0)
            viz.on_layer_config_update(OBJECTS, LayerConfig(visualize=False))
            assert viz.tick() is True
        finally:
            release.set()
            slow.join(timeout=2.0)

        assert results == [False]
        centroids = sink.last(Channel.CENTROIDS)
        assert [m.action for m in centroids.markers] == [MarkerAction.DELETE]
        assert viz.needs_redraw is False

        viz.on_layer_config_update(OBJECTS, LayerConfig())
        assert viz.tick() is True
        assert [m.action for m in sink.last(Channel.CENTROIDS).markers] == [MarkerAction.ADD]

    def test_stop_timeout_keeps_loop_registered(self, make_visualizer, three_node_graph, monkeypatch):
        viz = make_visualizer(layer_ids=(OBJECTS,), settings=ControllerSettings(loop_period=0.01))
        entered, release = _hold_first_build(viz, monkeypatch)
        viz.set_graph(three_node_graph)
        viz.start()
        try:
            assert entered.wait(timeout=2.0)
            viz.stop(timeout=0.01)
            assert viz.running

            release.set()
            viz.start()
            loops = [t for t in threading.enumerate() if t.name == "layerview-redraw" and t.is_alive()]
            assert len(loops) == 1
            assert viz.running
        finally:
            release.set()
            viz.stop(timeout=2.0)
        assert not viz.running


# ---------------------------------------------------------------------------
# Configuration access
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_default_layer_configs(self, make_visualizer):
        viz = make_visualizer()
        assert viz.layer_config(OBJECTS).z_offset_scale == 0.0
        assert viz.layer_config(ROOMS).z_offset_scale == 2.0
        assert viz.layer_config(9) is None

    def test_layer_configs_returns_a_copy(self, make_visualizer):
        viz = make_visualizer()
        configs = viz.layer_configs()
        configs[OBJECTS] = LayerConfig(visualize=False)
        assert viz.layer_config(OBJECTS).visualize is True

    def test_from_settings(self, sink):
        settings = parse_settings({
            "world_frame": "map",
            "visualizer": {"layer_z_step": 1.0},
            "layers": {"2": {"use_label": True}},
        })
        viz = SceneGraphVisualizer.from_settings([OBJECTS, PLACES], settings, [sink])

        assert viz.world_frame == "map"
        assert viz.visualizer_config.layer_z_step == 1.0
        assert viz.layer_config(OBJECTS).use_label is True
        assert viz.layer_config(PLACES).z_offset_scale == 1.0


# ---------------------------------------------------------------------------
# Redraw loop and threading
# ---------------------------------------------------------------------------


class TestRedrawLoop:
    def test_start_and_stop(self, make_visualizer, sink, three_node_graph):
        viz = make_visualizer(layer_ids=(OBJECTS,), settings=ControllerSettings(loop_period=0.01))
        viz.start()
        try:
            assert viz.running
            viz.set_graph(three_node_graph)
            assert _wait_for(lambda: sink.last(Channel.CENTROIDS) is not None)
        finally:
            viz.stop(timeout=2.0)
        assert not viz.running

    def test_start_twice_keeps_one_thread(self, make_visualizer):
        viz = make_visualizer(settings=ControllerSettings(loop_period=0.01))
        viz.start()
        try:
            thread = viz._thread
            viz.start()
            assert viz._thread is thread
        finally:
            viz.stop(timeout=2.0)

    def test_context_manager_shuts_down_sinks(self, three_node_graph):
        recorder = RecordingSink()
        closer = _ShutdownSink()
        viz = SceneGraphVisualizer(
            [OBJECTS],
            [recorder, closer],
            settings=ControllerSettings(loop_period=0.01),
        )
        with viz:
            viz.set_graph(three_node_graph)
            assert _wait_for(lambda: recorder.last(Channel.CENTROIDS) is not None)
        assert not viz.running
        assert closer.shutdown_called

    def test_failing_tick_keeps_loop_alive(self, three_node_graph, caplog):
        viz = SceneGraphVisualizer(
            [OBJECTS],
            [_ExplodingSink()],
            settings=ControllerSettings(loop_period=0.01),
            strict=True,
        )
        with caplog.at_level(logging.ERROR, logger="layerview.visualizer"):
            viz.start()
            try:
                viz.set_graph(three_node_graph)
                assert _wait_for(lambda: "Scene graph redraw failed" in caplog.text)
                assert viz.running
            finally:
                viz.stop(timeout=2.0)

    def test_concurrent_config_updates(self, make_visualizer, sink, layered_graph):
        viz = make_visualizer()
        viz.set_graph(layered_graph)
        errors = []

        def update():
            try:
                for i in range(200):
                    viz.on_layer_config_update(PLACES, LayerConfig(z_offset_scale=1.0, marker_scale=0.1 + i * 0.001))
            except Exception as e:  # pragma: no cover
                errors.append(e)

        writers = [threading.Thread(target=update) for _ in range(4)]
        for t in writers:
            t.start()
        for _ in range(50):
            viz.tick()
        for t in writers:
            t.join()

        assert errors == []
        viz.on_layer_config_update(PLACES, LayerConfig(z_offset_scale=1.0, marker_scale=0.75))
        assert viz.tick() is True
        places = next(m for m in sink.last(Channel.CENTROIDS).markers if m.id == PLACES)
        assert places.scale == (0.75, 0.75, 0.75)
