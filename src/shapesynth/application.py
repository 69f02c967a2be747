"""High level application orchestration."""

from __future__ import annotations

import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from .analysis import LevelAnalyzer
from .config import AppConfig, load_configuration
from .engine import SynthEngine
from .output import NullOutput, OutputFactory


@dataclass(slots=True)
class SynthApplication:
    """Runtime container pairing the engine with its level analyser.

    By default the engine is wired to a :class:`NullOutput`, so blocks are
    pulled with :meth:`render` and no audio device is needed.  This keeps
    headless runs and tests deterministic.
    """

    config: AppConfig
    engine: SynthEngine
    analyzer: LevelAnalyzer

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        output_factory: OutputFactory | None = None,
        rng: np.random.Generator | None = None,
    ) -> "SynthApplication":
        engine = SynthEngine.from_config(
            config,
            output_factory=output_factory or NullOutput,
            rng=rng,
        )
        return cls(config=config, engine=engine, analyzer=LevelAnalyzer(engine))

    @classmethod
    def from_file(cls, path: str, **kwargs) -> "SynthApplication":
        return cls.from_config(load_configuration(path), **kwargs)

    def render(self, frames: Optional[int] = None) -> np.ndarray:
        """Render one ``(channels, frames)`` block from the engine.

        When ``frames`` is omitted the configured chunk size is used.
        """

        frame_count = frames or self.config.runtime.frames_per_chunk
        return self.engine.render(frame_count)

    def render_frames(self, total: int) -> np.ndarray:
        """Render ``total`` frames in chunk-sized blocks and join them."""

        chunk = self.config.runtime.frames_per_chunk
        blocks = []
        remaining = int(total)
        while remaining > 0:
            size = min(chunk, remaining)
            blocks.append(self.render(size))
            remaining -= size
        if not blocks:
            return np.zeros((self.config.runtime.output_channels, 0))
        return np.concatenate(blocks, axis=1)

    def summary(self) -> str:
        """Return a human-readable description of the engine and its graph."""

        engine = self.engine
        lines = [
            f"Sample rate: {self.config.sample_rate} Hz",
            f"Output channels: {self.config.runtime.output_channels}",
            f"Frames per chunk: {self.config.runtime.frames_per_chunk}",
            f"State: {engine.state.value}",
            f"Waveform: {engine.waveform.value}",
        ]
        graph = engine.graph
        if graph is None:
            lines.append("Graph: not initialised")
            return "\n".join(lines)
        levels = graph.last_node_levels
        lines.append("Nodes:")
        for node in graph.ordered_nodes:
            peak = levels.get(node.name)
            suffix = f" peak {peak:.3f}" if peak is not None else ""
            lines.append(f"  - {node.name} ({node.__class__.__name__}){suffix}")
        for edge in graph.feedback_edges:
            lines.append(f"Feedback: {edge.source} -> {edge.target}")
        return "\n".join(lines)


def write_wav(path: str | Path, samples: np.ndarray, sample_rate: int) -> None:
    """Write a ``(channels, frames)`` float buffer as 16-bit PCM."""

    data = np.asarray(samples, dtype=np.float64)
    if data.ndim == 1:
        data = data[None, :]
    pcm16 = np.clip(np.rint(data.T * 32767.0), -32768, 32767).astype("<i2")
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(data.shape[0])
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(np.ascontiguousarray(pcm16).tobytes())


__all__ = ["SynthApplication", "write_wav"]
