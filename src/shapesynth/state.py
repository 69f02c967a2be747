"""Shared constants, enumerations and interaction defaults."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict

MAX_FRAMES = 4096


class Waveform(str, Enum):
    SINE = "sine"
    SQUARE = "square"
    SAWTOOTH = "sawtooth"
    TRIANGLE = "triangle"


class Shape(str, Enum):
    ICOSAHEDRON = "icosahedron"
    TORUS = "torus"
    OCTAHEDRON = "octahedron"
    DODECAHEDRON = "dodecahedron"


class PlaybackState(str, Enum):
    """Lifecycle of the signal graph engine.

    ``UNINITIALIZED`` -> ``STOPPED`` happens once, on the first successful
    activation.  ``STOPPED`` and ``PLAYING`` then alternate on every toggle.
    """

    UNINITIALIZED = "uninitialized"
    STOPPED = "initialized-stopped"
    PLAYING = "initialized-playing"


# =========================
# Parameter ranges / defaults
# =========================
PARAMETER_RANGES: Dict[str, tuple[float, float]] = {
    "frequency": (50.0, 2000.0),
    "filter_frequency": (200.0, 5000.0),
    "filter_q": (1.0, 20.0),
    "reverb_mix": (0.0, 1.0),
    "delay_time": (0.0, 0.5),
}

PARAMETER_DEFAULTS: Dict[str, float] = {
    "frequency": 440.0,
    "filter_frequency": 1000.0,
    "filter_q": 5.0,
    "reverb_mix": 0.3,
    "delay_time": 0.2,
}

# Three octaves starting at A2.
NORMALIZED_MIN_FREQUENCY = 110.0
NORMALIZED_MAX_FREQUENCY = 1760.0

# =========================
# Interaction defaults
# =========================
SCALE_RANGE = (0.5, 3.0)
SCALE_STEP = 0.1
DEFAULT_SCALE = 1.0
DRAG_RESET_DELAY_TIME = 0.2
DRAG_RESET_REVERB_MIX = 0.3
# Drag offsets are expressed in scene units: a full canvas width moves 4 units.
DRAG_WORLD_UNITS = 4.0

_DEFAULT_KEYMAP: Dict[str, Any] = {
    "1": ("shape", Shape.ICOSAHEDRON),
    "2": ("shape", Shape.TORUS),
    "3": ("shape", Shape.OCTAHEDRON),
    "4": ("shape", Shape.DODECAHEDRON),
    "q": ("wave", Waveform.SINE),
    "w": ("wave", Waveform.SQUARE),
    "e": ("wave", Waveform.SAWTOOTH),
    "r": ("wave", Waveform.TRIANGLE),
    " ": ("activate", None),
}


def build_default_keymap() -> Dict[str, Any]:
    """Return a fresh copy of the key -> action table."""

    return dict(_DEFAULT_KEYMAP)


__all__ = [
    "DEFAULT_SCALE",
    "DRAG_RESET_DELAY_TIME",
    "DRAG_RESET_REVERB_MIX",
    "DRAG_WORLD_UNITS",
    "MAX_FRAMES",
    "NORMALIZED_MAX_FREQUENCY",
    "NORMALIZED_MIN_FREQUENCY",
    "PARAMETER_DEFAULTS",
    "PARAMETER_RANGES",
    "PlaybackState",
    "SCALE_RANGE",
    "SCALE_STEP",
    "Shape",
    "Waveform",
    "build_default_keymap",
]
