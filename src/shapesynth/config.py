"""Configuration loading for the synthesiser."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Tuple

from .state import MAX_FRAMES

_REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = _REPO_ROOT / "configs" / "default.json"


DEFAULT_SAMPLE_RATE = 44100
DEFAULT_FRAMES_PER_CHUNK = 256
DEFAULT_OUTPUT_CHANNELS = 2


@dataclass(slots=True)
class RuntimeConfig:
    """Runtime parameters that are independent of the graph layout."""

    frames_per_chunk: int = DEFAULT_FRAMES_PER_CHUNK
    output_channels: int = DEFAULT_OUTPUT_CHANNELS
    window_size: Tuple[int, int] = (1280, 800)
    log_events: bool = False


@dataclass(slots=True)
class SynthConfig:
    """Fixed constants of the signal graph and its automation."""

    ramp_seconds: float = 0.05
    envelope_seconds: float = 0.1
    play_gain: float = 0.5
    delay_feedback: float = 0.4
    delay_mix: float = 0.3
    master_gain: float = 0.3
    impulse_seconds: float = 2.0
    fft_size: int = 256
    max_delay_seconds: float = 1.0


@dataclass(slots=True)
class AppConfig:
    sample_rate: int = DEFAULT_SAMPLE_RATE
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    synth: SynthConfig = field(default_factory=SynthConfig)


def _normalise_runtime(data: MutableMapping[str, Any]) -> RuntimeConfig:
    frames = int(data.get("frames_per_chunk", DEFAULT_FRAMES_PER_CHUNK))
    if frames <= 0 or frames > MAX_FRAMES:
        raise ValueError(f"runtime.frames_per_chunk must be in 1..{MAX_FRAMES}, got {frames}")
    channels = int(data.get("output_channels", DEFAULT_OUTPUT_CHANNELS))
    if channels not in (1, 2):
        raise ValueError(f"runtime.output_channels must be 1 or 2, got {channels}")
    window = data.get("window_size", (1280, 800)) or (1280, 800)
    if len(window) != 2:
        raise ValueError("runtime.window_size must be [width, height]")
    return RuntimeConfig(
        frames_per_chunk=frames,
        output_channels=channels,
        window_size=(int(window[0]), int(window[1])),
        log_events=bool(data.get("log_events", False)),
    )


def _normalise_synth(data: Mapping[str, Any]) -> SynthConfig:
    defaults = SynthConfig()
    values = {}
    for name in (item.name for item in fields(SynthConfig)):
        raw = data.get(name, getattr(defaults, name))
        try:
            values[name] = type(getattr(defaults, name))(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"synth.{name}: invalid value {raw!r}") from exc
    synth = SynthConfig(**values)
    if synth.fft_size < 32 or synth.fft_size & (synth.fft_size - 1):
        raise ValueError("synth.fft_size must be a power of two >= 32")
    if synth.impulse_seconds <= 0.0:
        raise ValueError("synth.impulse_seconds must be positive")
    if synth.max_delay_seconds < 0.5:
        raise ValueError("synth.max_delay_seconds must cover the 0.5 s delay range")
    return synth


def load_configuration(path: str | Path) -> AppConfig:
    """Load an :class:`AppConfig` from ``path``."""

    with open(path, "r", encoding="utf8") as fh:
        raw = json.load(fh)
    runtime = _normalise_runtime(dict(raw.get("runtime", {}) or {}))
    synth = _normalise_synth(raw.get("synth", {}) or {})
    sample_rate = int(raw.get("sample_rate", DEFAULT_SAMPLE_RATE))
    if sample_rate <= 0:
        raise ValueError("sample_rate must be positive")
    return AppConfig(sample_rate=sample_rate, runtime=runtime, synth=synth)


__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "RuntimeConfig",
    "SynthConfig",
    "load_configuration",
]
