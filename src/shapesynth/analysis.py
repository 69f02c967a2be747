"""Per-frame loudness estimate for the renderer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import numpy as np

if TYPE_CHECKING:  # pragma: no cover
    from .engine import SynthEngine


def level_from_spectrum(spectrum: Sequence[int] | np.ndarray) -> float:
    """Mean of a byte magnitude spectrum scaled to [0, 1]."""

    data = np.asarray(spectrum, dtype=np.float64)
    if data.size == 0:
        return 0.0
    return float(np.clip(np.mean(data) / 255.0, 0.0, 1.0))


class LevelAnalyzer:
    """Reads the engine's analyser once per call; no caching, no smoothing."""

    def __init__(self, engine: "SynthEngine") -> None:
        self.engine = engine

    def level(self) -> float:
        analyser = self.engine.analyser
        if analyser is None:
            return 0.0
        return level_from_spectrum(analyser.get_byte_frequency_data())


__all__ = ["LevelAnalyzer", "level_from_spectrum"]
