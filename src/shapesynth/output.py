"""Audio output sinks built on top of :mod:`sounddevice`."""

from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import TYPE_CHECKING, Callable, Optional, Protocol

import numpy as np

if TYPE_CHECKING:  # pragma: no cover
    from .engine import SynthEngine


class AudioUnavailableError(RuntimeError):
    """Raised when the audio output cannot be acquired."""


class AudioOutput(Protocol):
    def start(self) -> None: ...

    def close(self) -> None: ...


OutputFactory = Callable[["SynthEngine"], AudioOutput]


def _load_sounddevice() -> ModuleType:
    try:
        module = import_module("sounddevice")
    except (ImportError, OSError) as exc:
        # sounddevice raises OSError when the PortAudio library is missing.
        raise AudioUnavailableError(f"sounddevice is unavailable: {exc}") from exc
    return module


class NullOutput:
    """Output that never opens a device; the caller pulls blocks itself."""

    def __init__(self, engine: "SynthEngine | None" = None) -> None:
        self.engine = engine
        self.started = False

    def start(self) -> None:
        self.started = True

    def close(self) -> None:
        self.started = False


class SoundDeviceOutput:
    """Callback stream that pulls blocks from the engine on the audio thread."""

    def __init__(self, sd: ModuleType, engine: "SynthEngine", *, blocksize: int, channels: int, device: Optional[int] = None) -> None:
        self._sd = sd
        self._engine = engine
        self.underflows = 0
        try:
            self._stream = sd.OutputStream(
                device=device,
                channels=channels,
                dtype="float32",
                samplerate=engine.sample_rate,
                blocksize=blocksize,
                latency="low",
                callback=self._callback,
            )
        except Exception as exc:  # PortAudioError and friends, backend specific
            raise AudioUnavailableError(f"could not open audio output: {exc}") from exc

    @classmethod
    def create(cls, engine: "SynthEngine") -> "SoundDeviceOutput":
        sd = _load_sounddevice()
        return cls(sd, engine, blocksize=engine.frames_per_chunk, channels=engine.output_channels)

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status and status.output_underflow:
            self.underflows += 1
        block = self._engine.render(frames)
        outdata[:] = np.asarray(block.T, dtype=np.float32)

    def start(self) -> None:
        try:
            self._stream.start()
        except Exception as exc:
            raise AudioUnavailableError(f"could not start audio output: {exc}") from exc

    def close(self) -> None:
        self._stream.stop()
        self._stream.close()


__all__ = [
    "AudioOutput",
    "AudioUnavailableError",
    "NullOutput",
    "OutputFactory",
    "SoundDeviceOutput",
]
