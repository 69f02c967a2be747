"""Pointer-driven synthesiser with an audio-reactive shape."""

from __future__ import annotations

from .app import run as run_app
from .engine import SynthEngine

__all__ = ["SynthEngine", "run_app"]
