from __future__ import annotations

import numpy as np
import pytest

from shapesynth.graph import AudioGraph, ConnectionSpec, NodeSpec
from shapesynth.nodes import DelayNode, GainNode, MixNode, Node


class _Const(Node):
    def __init__(self, name, value):
        super().__init__(name)
        self.value = float(value)

    def process(self, frames, sr, audio_in, params):
        return np.full((1, 1, frames), self.value, dtype=np.float64)


class _Impulse(Node):
    def __init__(self, name):
        super().__init__(name)
        self.fired = False

    def process(self, frames, sr, audio_in, params):
        out = np.zeros((1, 1, frames), dtype=np.float64)
        if not self.fired:
            out[0, 0, 0] = 1.0
            self.fired = True
        return out


def _gain_loop_graph() -> AudioGraph:
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(GainNode("a"))
    graph.add_node(GainNode("b"))
    graph.add_node(MixNode("out"))
    graph.connect_audio("a", "b")
    graph.connect_audio("b", "out")
    graph.set_sink("out")
    return graph


def test_graph_render_shape():
    graph = AudioGraph.from_layout(
        [
            NodeSpec("osc", "oscillator", {"wave": "sine", "frequency": 220.0}),
            NodeSpec("amp", "gain", {"gain": 0.5}),
            NodeSpec("out", "destination", {"channels": 2}),
        ],
        [ConnectionSpec("osc", "amp"), ConnectionSpec("amp", "out")],
        sink="out",
        sample_rate=48000,
        output_channels=2,
    )
    graph.node("osc").start()
    data = graph.render(256)
    assert data.shape == (2, 256)
    assert np.isfinite(data).all()
    assert 0.0 < np.max(np.abs(data)) <= 0.5 + 1e-9
    np.testing.assert_allclose(data[0], data[1])
    assert [node.name for node in graph.ordered_nodes] == ["osc", "amp", "out"]


def test_unknown_node_type_is_rejected():
    with pytest.raises(KeyError, match="Unknown node type"):
        AudioGraph.from_layout([NodeSpec("x", "theremin")], [], sink="x", sample_rate=1000)


def test_duplicate_node_names_are_rejected():
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(GainNode("a"))
    with pytest.raises(ValueError):
        graph.add_node(GainNode("a"))


def test_forward_cycle_is_rejected():
    graph = _gain_loop_graph()
    graph.connect_audio("b", "a")
    with pytest.raises(ValueError, match="cycle"):
        graph.validate()


def test_feedback_edge_must_end_on_a_delay():
    graph = _gain_loop_graph()
    graph.connect_audio("b", "a", feedback=True)
    with pytest.raises(ValueError, match="delay"):
        graph.validate()


def test_feedback_edge_must_close_a_cycle():
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(DelayNode("delay"))
    graph.add_node(GainNode("fb"))
    graph.connect_audio("fb", "delay", feedback=True)
    with pytest.raises(ValueError, match="does not close a cycle"):
        graph.validate()


def test_only_one_feedback_edge_is_permitted():
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(DelayNode("delay"))
    graph.add_node(GainNode("fb1"))
    graph.add_node(GainNode("fb2"))
    graph.connect_audio("delay", "fb1")
    graph.connect_audio("delay", "fb2")
    graph.connect_audio("fb1", "delay", feedback=True)
    graph.connect_audio("fb2", "delay", feedback=True)
    with pytest.raises(ValueError, match="feedback edge"):
        graph.validate()


def test_valid_feedback_loop_marks_delay_in_cycle():
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(DelayNode("delay"))
    graph.add_node(GainNode("fb"))
    graph.connect_audio("delay", "fb")
    graph.connect_audio("fb", "delay", feedback=True)
    graph.validate()
    assert graph.node("delay").in_cycle is True
    assert len(graph.feedback_edges) == 1
    assert len(graph.edges) == 2


def test_delay_feedback_echo_timing():
    sr = 1024
    frames = 32
    graph = AudioGraph(sample_rate=sr)
    graph.add_node(_Impulse("imp"))
    graph.add_node(DelayNode("delay", {"delay_time": 64 / sr, "max_delay_seconds": 1.0}))
    graph.add_node(GainNode("fb", {"gain": 0.5}))
    graph.add_node(MixNode("out"))
    graph.connect_audio("imp", "delay")
    graph.connect_audio("delay", "fb")
    graph.connect_audio("fb", "delay", feedback=True)
    graph.connect_audio("delay", "out")
    graph.set_sink("out")

    rendered = np.concatenate([graph.render(frames) for _ in range(8)], axis=1)[0]

    expected = np.zeros(8 * frames)
    expected[64] = 1.0
    expected[128] = 0.5
    expected[192] = 0.25
    np.testing.assert_allclose(rendered, expected, atol=1e-12)
    assert graph.current_time == pytest.approx(8 * frames / sr)


def test_inputs_are_summed_and_upmixed():
    graph = AudioGraph(sample_rate=1000, output_channels=2)
    graph.add_node(_Const("one", 1.0))
    graph.add_node(_Const("two", 2.0))
    graph.add_node(MixNode("out"))
    graph.connect_audio("one", "out")
    graph.connect_audio("two", "out")
    graph.set_sink("out")
    data = graph.render(8)
    assert data.shape == (2, 8)
    np.testing.assert_allclose(data, 3.0)
    assert graph.last_node_levels == {"one": 1.0, "two": 2.0, "out": 3.0}


def test_replace_node_keeps_edges():
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(_Const("src", 1.0))
    graph.add_node(GainNode("g", {"gain": 0.5}))
    graph.add_node(MixNode("out"))
    graph.connect_audio("src", "g")
    graph.connect_audio("g", "out")
    graph.set_sink("out")
    np.testing.assert_allclose(graph.render(4), 0.5)

    previous = graph.replace_node(GainNode("g", {"gain": 2.0}))
    assert previous.gain.target == 0.5
    np.testing.assert_allclose(graph.render(4), 2.0)


def test_disconnect_and_remove_node():
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(_Const("src", 1.0))
    graph.add_node(MixNode("out"))
    graph.connect_audio("src", "out")
    graph.set_sink("out")
    graph.disconnect("src")
    assert graph.edges == ()
    np.testing.assert_allclose(graph.render(4), 0.0)

    graph.connect_audio("src", "out")
    graph.remove_node("src")
    assert graph.edges == ()
    with pytest.raises(KeyError):
        graph.node("src")


def test_render_requires_sink_and_positive_frames():
    graph = AudioGraph(sample_rate=1000)
    graph.add_node(_Const("src", 1.0))
    with pytest.raises(RuntimeError):
        graph.render(4)
    graph.set_sink("src")
    with pytest.raises(ValueError):
        graph.render(0)
