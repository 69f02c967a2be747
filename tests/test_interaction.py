from __future__ import annotations

import math

import numpy as np
import pytest

from shapesynth.config import SynthConfig
from shapesynth.engine import SynthEngine
from shapesynth.interaction import (
    EventKind,
    InputEvent,
    InteractionController,
    delay_time_for,
    filter_frequency_for,
    filter_q_for,
    format_readouts,
    next_scale,
    normalized_scale,
    reverb_mix_for,
    rotation_for,
)
from shapesynth.output import AudioUnavailableError, NullOutput
from shapesynth.scene import ShapeScene
from shapesynth.state import PARAMETER_DEFAULTS, PlaybackState, Shape, Waveform
from shapesynth.ui import HudPanel


def _engine(factory=NullOutput) -> SynthEngine:
    return SynthEngine(
        8000,
        synth=SynthConfig(impulse_seconds=0.1),
        output_factory=factory,
        rng=np.random.default_rng(9),
    )


def _controller(engine=None):
    scene = ShapeScene()
    hud = HudPanel()
    controller = InteractionController(scene, engine or _engine(), hud)
    return controller, scene, hud


@pytest.mark.parametrize("x", np.linspace(0.0, 1.0, 11))
def test_filter_frequency_mapping(x):
    value = filter_frequency_for(x)
    assert value == pytest.approx(200.0 + 4800.0 * x)
    assert 200.0 <= value <= 5000.0


@pytest.mark.parametrize("y", np.linspace(0.0, 1.0, 11))
def test_filter_q_mapping(y):
    value = filter_q_for(y)
    assert value == pytest.approx(1.0 + 19.0 * y)
    assert 1.0 <= value <= 20.0


def test_rotation_mapping():
    assert rotation_for(0.5, 0.5) == (0.0, 0.0)
    rx, ry = rotation_for(1.0, 0.0)
    assert rx == pytest.approx(-math.pi)
    assert ry == pytest.approx(math.pi)


def test_wheel_scale_is_clamped():
    scale = 1.0
    for _ in range(50):
        scale = next_scale(scale, -1.0)
        assert scale <= 3.0
    assert scale == pytest.approx(3.0)
    for _ in range(50):
        scale = next_scale(scale, 1.0)
        assert scale >= 0.5
    assert scale == pytest.approx(0.5)
    assert next_scale(1.0, 0.0) == pytest.approx(1.1)


def test_normalized_scale_and_frequency_landmarks():
    assert normalized_scale(0.5) == 0.0
    assert normalized_scale(3.0) == 1.0
    assert normalized_scale(1.0) == pytest.approx(0.2)
    engine = _engine()
    engine.initialize()
    assert engine.set_frequency_normalized(normalized_scale(0.5)) == pytest.approx(110.0)
    assert engine.set_frequency_normalized(normalized_scale(1.0)) == pytest.approx(110.0 * 16.0 ** 0.2)
    assert engine.set_frequency_normalized(normalized_scale(1.0)) == pytest.approx(191.5, abs=0.05)


def test_drag_mappings_are_clamped():
    assert delay_time_for(-0.1) == pytest.approx(0.05)
    assert delay_time_for(3.0) == 0.5
    assert reverb_mix_for(-0.4) == pytest.approx(0.4)
    assert reverb_mix_for(2.0) == 1.0


def test_format_readouts_for_defaults():
    assert format_readouts(PARAMETER_DEFAULTS) == {
        "freq-display": "440 Hz",
        "filter-display": "1000 Hz",
        "q-display": "5.0",
        "reverb-display": "30%",
        "delay-display": "200ms",
    }


def test_pointer_before_activation_only_moves_scene():
    controller, scene, hud = _controller()
    controller.handle(InputEvent(EventKind.POINTER_MOVE, 1.0, 1.0))
    assert scene.target_rotation == pytest.approx((math.pi, math.pi))
    assert controller.engine.parameter_value("filter_frequency") == 1000.0
    assert hud.text["filter-display"] == "1000 Hz"
    assert controller.engine.state is PlaybackState.UNINITIALIZED


def test_activation_initializes_then_toggles():
    controller, _, hud = _controller()
    assert controller.activate() is PlaybackState.PLAYING
    assert controller.engine.initialized
    assert hud.text["status"] == "Playing"
    assert controller.activate() is PlaybackState.STOPPED
    assert hud.text["status"] == "Paused"
    controller.handle(InputEvent(EventKind.ACTIVATE))
    assert controller.engine.is_playing


def test_activation_failure_propagates_and_retries():
    attempts = []

    def factory(engine):
        attempts.append(engine)
        if len(attempts) == 1:
            raise AudioUnavailableError("device busy")
        return NullOutput(engine)

    controller, _, hud = _controller(_engine(factory))
    with pytest.raises(AudioUnavailableError):
        controller.activate()
    assert controller.engine.state is PlaybackState.UNINITIALIZED
    assert hud.text["status"] != "Playing"

    assert controller.activate() is PlaybackState.PLAYING
    assert len(attempts) == 2


def test_activation_is_reentrancy_guarded():
    nested = []

    def factory(engine):
        nested.append(controller.activate())
        return NullOutput(engine)

    controller, _, _ = _controller(_engine(factory))
    assert controller.activate() is PlaybackState.PLAYING
    assert nested == [PlaybackState.UNINITIALIZED]


def test_drag_end_restores_effect_defaults():
    controller, scene, _ = _controller()
    controller.activate()
    for dx, dy in [(0.3, 0.9), (-0.45, 0.05), (0.0, -0.7)]:
        controller.on_pointer_down(0.5, 0.5)
        controller.on_pointer_move(0.5 + dx, 0.5 + dy)
        assert scene.position != (0.0, 0.0) or (dx, dy) == (0.0, 0.0)
        controller.on_pointer_up()
        assert controller.engine.parameter_value("delay_time") == 0.2
        assert controller.engine.parameter_value("reverb_mix") == 0.3
        assert scene.position == (0.0, 0.0)
        assert controller.state.dragging is False
        assert controller.state.drag_origin is None


def test_drag_moves_shape_in_world_units():
    controller, scene, _ = _controller()
    controller.activate()
    controller.on_pointer_down(0.2, 0.2)
    controller.on_pointer_move(0.45, 0.7)
    assert scene.position == pytest.approx((1.0, -2.0))
    assert controller.engine.parameter_value("delay_time") == pytest.approx(0.125)
    assert controller.engine.parameter_value("reverb_mix") == pytest.approx(0.5)


def test_keys_select_shape_waveform_and_activate():
    controller, scene, hud = _controller()
    controller.handle(InputEvent(EventKind.KEY, key="2"))
    assert scene.shape is Shape.TORUS
    assert hud.active["shape"] == "torus"

    controller.handle(InputEvent(EventKind.KEY, key="r"))
    assert controller.engine.waveform is Waveform.TRIANGLE
    assert hud.active["wave"] == "triangle"

    controller.handle(InputEvent(EventKind.KEY, key="Q"))
    controller.handle(InputEvent(EventKind.KEY, key="9"))
    assert controller.engine.waveform is Waveform.TRIANGLE

    controller.handle(InputEvent(EventKind.KEY, key=" "))
    assert controller.engine.is_playing
    controller.handle(InputEvent(EventKind.KEY, key="w"))
    assert controller.engine.graph.node("osc").wave == "square"


def test_end_to_end_scenario():
    controller, scene, hud = _controller()
    controller.handle(InputEvent(EventKind.ACTIVATE))
    engine = controller.engine

    controller.handle(InputEvent(EventKind.POINTER_MOVE, 0.0, 0.0))
    assert engine.parameter_value("filter_frequency") == 200.0
    assert engine.parameter_value("filter_q") == 1.0

    controller.handle(InputEvent(EventKind.POINTER_MOVE, 1.0, 1.0))
    assert engine.parameter_value("filter_frequency") == 5000.0
    assert engine.parameter_value("filter_q") == 20.0
    assert hud.text["filter-display"] == "5000 Hz"
    assert hud.text["q-display"] == "20.0"

    controller.handle(InputEvent(EventKind.WHEEL, delta_y=-1.0))
    assert scene.current_scale == pytest.approx(1.1)
    expected = 110.0 * 16.0 ** ((1.1 - 0.5) / 2.5)
    assert engine.parameter_value("frequency") == pytest.approx(expected)
    assert hud.text["freq-display"] == f"{int(math.floor(expected + 0.5))} Hz"

    controller.handle(InputEvent(EventKind.POINTER_DOWN, 0.5, 0.5))
    controller.handle(InputEvent(EventKind.POINTER_MOVE, 0.4, 0.5))
    assert engine.parameter_value("delay_time") == pytest.approx(0.05)
    assert hud.text["delay-display"] == "50ms"

    controller.handle(InputEvent(EventKind.POINTER_UP, 0.4, 0.5))
    assert engine.parameter_value("delay_time") == 0.2
    assert hud.text["delay-display"] == "200ms"
    assert hud.text["reverb-display"] == "30%"
