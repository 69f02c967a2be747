"""Translate pointer, wheel and key input into parameter targets.

The mapping functions are pure and exact; :class:`InteractionController`
adds the little state a drag needs and pushes the derived values to the
engine, the scene and the HUD.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple

from .diagnostics import log_event
from .engine import SynthEngine
from .state import (
    DEFAULT_SCALE,
    DRAG_RESET_DELAY_TIME,
    DRAG_RESET_REVERB_MIX,
    DRAG_WORLD_UNITS,
    PARAMETER_RANGES,
    SCALE_RANGE,
    SCALE_STEP,
    PlaybackState,
    Shape,
    Waveform,
    build_default_keymap,
)
from .utils import clamp


class EventKind(str, Enum):
    POINTER_DOWN = "pointer_down"
    POINTER_MOVE = "pointer_move"
    POINTER_UP = "pointer_up"
    WHEEL = "wheel"
    ACTIVATE = "activate"
    KEY = "key"


@dataclass(slots=True)
class InputEvent:
    """One input event with pointer coordinates normalised to the canvas.

    Mouse and touch both produce these; ``x``/``y`` are in [0, 1] for pointer
    events, ``delta_y`` carries the wheel direction and ``key`` the typed
    character.
    """

    kind: EventKind
    x: float = 0.0
    y: float = 0.0
    delta_y: float = 0.0
    key: Optional[str] = None


# =========================
# Pure mappings
# =========================
def filter_frequency_for(x: float) -> float:
    return 200.0 + x * 4800.0


def filter_q_for(y: float) -> float:
    return 1.0 + y * 19.0


def rotation_for(x: float, y: float) -> Tuple[float, float]:
    """Scene rotation (about x, about y) for a pointer position."""
    return (y - 0.5) * math.pi * 2.0, (x - 0.5) * math.pi * 2.0


def next_scale(scale: float, delta_y: float) -> float:
    """Wheel down (positive delta) shrinks, anything else grows; clamped."""
    step = -SCALE_STEP if delta_y > 0 else SCALE_STEP
    return clamp(scale + step, *SCALE_RANGE)


def normalized_scale(scale: float) -> float:
    lo, hi = SCALE_RANGE
    return (scale - lo) / (hi - lo)


def delay_time_for(dx: float) -> float:
    return clamp(abs(dx) * 0.5, *PARAMETER_RANGES["delay_time"])


def reverb_mix_for(dy: float) -> float:
    return clamp(abs(dy), *PARAMETER_RANGES["reverb_mix"])


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_readouts(values: Dict[str, float]) -> Dict[str, str]:
    """HUD text for each parameter readout."""

    return {
        "freq-display": f"{_round_half_up(values['frequency'])} Hz",
        "filter-display": f"{_round_half_up(values['filter_frequency'])} Hz",
        "q-display": f"{values['filter_q']:.1f}",
        "reverb-display": f"{_round_half_up(values['reverb_mix'] * 100)}%",
        "delay-display": f"{_round_half_up(values['delay_time'] * 1000)}ms",
    }


# =========================
# Collaborator ports
# =========================
class ScenePort(Protocol):
    current_scale: float

    def set_rotation(self, x: float, y: float) -> None: ...

    def set_scale(self, scale: float) -> None: ...

    def set_position(self, x: float, y: float) -> None: ...

    def create_geometry(self, kind: Shape | str) -> None: ...

    def set_audio_level(self, level: float) -> None: ...


class UiPort(Protocol):
    def set_text(self, key: str, text: str) -> None: ...

    def set_active(self, group: str, value: str) -> None: ...


@dataclass(slots=True)
class InteractionState:
    pointer: Tuple[float, float] = (0.0, 0.0)
    dragging: bool = False
    drag_origin: Optional[Tuple[float, float]] = None
    scale: float = DEFAULT_SCALE
    shape_offset: Tuple[float, float] = (0.0, 0.0)


class InteractionController:
    """Routes :class:`InputEvent` objects to the engine, scene and HUD."""

    def __init__(
        self,
        scene: ScenePort,
        engine: SynthEngine,
        ui: UiPort | None = None,
        keymap: Dict[str, Any] | None = None,
    ) -> None:
        self.scene = scene
        self.engine = engine
        self.ui = ui
        self.keymap = keymap if keymap is not None else build_default_keymap()
        self.state = InteractionState(scale=float(getattr(scene, "current_scale", DEFAULT_SCALE)))
        self._activating = False

    def handle(self, event: InputEvent) -> None:
        kind = EventKind(event.kind)
        if kind is EventKind.POINTER_MOVE:
            self.on_pointer_move(event.x, event.y)
        elif kind is EventKind.POINTER_DOWN:
            self.on_pointer_down(event.x, event.y)
        elif kind is EventKind.POINTER_UP:
            self.on_pointer_up()
        elif kind is EventKind.WHEEL:
            self.on_wheel(event.delta_y)
        elif kind is EventKind.ACTIVATE:
            self.activate()
        elif kind is EventKind.KEY:
            if event.key is not None:
                self.on_key(event.key)

    # ------------------------------------------------------------------
    # Pointer
    def on_pointer_move(self, x: float, y: float) -> None:
        self.state.pointer = (x, y)
        self.scene.set_rotation(*rotation_for(x, y))
        self.engine.set_filter_frequency(filter_frequency_for(x))
        self.engine.set_filter_q(filter_q_for(y))

        if self.state.dragging and self.state.drag_origin is not None:
            ox, oy = self.state.drag_origin
            dx, dy = x - ox, y - oy
            self.state.shape_offset = (dx * DRAG_WORLD_UNITS, -dy * DRAG_WORLD_UNITS)
            self.scene.set_position(*self.state.shape_offset)
            self.engine.set_delay_time(delay_time_for(dx))
            self.engine.set_reverb_mix(reverb_mix_for(dy))

        self.update_ui()

    def on_pointer_down(self, x: float, y: float) -> None:
        self.state.dragging = True
        self.state.drag_origin = (x, y)

    def on_pointer_up(self) -> None:
        self.state.dragging = False
        self.state.drag_origin = None
        self.state.shape_offset = (0.0, 0.0)
        self.scene.set_position(0.0, 0.0)
        self.engine.set_delay_time(DRAG_RESET_DELAY_TIME)
        self.engine.set_reverb_mix(DRAG_RESET_REVERB_MIX)
        self.update_ui()

    def on_wheel(self, delta_y: float) -> float:
        scale = next_scale(float(self.scene.current_scale), delta_y)
        self.state.scale = scale
        self.scene.set_scale(scale)
        self.engine.set_frequency_normalized(normalized_scale(scale))
        self.update_ui()
        return scale

    # ------------------------------------------------------------------
    # Playback
    def activate(self) -> PlaybackState:
        """Toggle playback, initialising the engine on first use.

        A second activation while one is still in flight is ignored.  Output
        failures propagate to the caller with the engine left uninitialised.
        """

        if self._activating:
            return self.engine.state
        self._activating = True
        try:
            if not self.engine.initialized:
                self.engine.initialize()
            if self.engine.is_playing:
                self.engine.stop()
                self._set_status("Paused")
            else:
                self.engine.start()
                self._set_status("Playing")
        finally:
            self._activating = False
        return self.engine.state

    def _set_status(self, text: str) -> None:
        if self.ui is not None:
            self.ui.set_text("status", text)

    # ------------------------------------------------------------------
    # Keys
    def on_key(self, key: str) -> None:
        action = self.keymap.get(key)
        if action is None:
            return
        kind, value = action
        if kind == "shape":
            self.change_shape(value)
        elif kind == "wave":
            self.change_waveform(value)
        elif kind == "activate":
            self.activate()

    def change_shape(self, shape: Shape | str) -> None:
        shape = Shape(shape)
        self.scene.create_geometry(shape)
        if self.ui is not None:
            self.ui.set_active("shape", shape.value)
        log_event(f"interaction.shape {shape.value}")

    def change_waveform(self, wave: Waveform | str) -> None:
        wave = Waveform(wave)
        self.engine.set_waveform(wave)
        if self.ui is not None:
            self.ui.set_active("wave", wave.value)

    def update_ui(self) -> None:
        if self.ui is None:
            return
        values = {name: self.engine.parameter_value(name) for name in PARAMETER_RANGES}
        for key, text in format_readouts(values).items():
            self.ui.set_text(key, text)


__all__ = [
    "EventKind",
    "InputEvent",
    "InteractionController",
    "InteractionState",
    "ScenePort",
    "UiPort",
    "delay_time_for",
    "filter_frequency_for",
    "filter_q_for",
    "format_readouts",
    "next_scale",
    "normalized_scale",
    "reverb_mix_for",
    "rotation_for",
]
