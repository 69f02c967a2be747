# nodes.py
from __future__ import annotations

import math
import threading
from collections.abc import Mapping

import numpy as np
from scipy.signal import lfilter

from .params import AudioParam
from .state import MAX_FRAMES, Waveform
from .utils import RAW_DTYPE, assert_BCF, db_to_byte, make_wave_hq, match_channels


def _ensure_bcf(audio_in, frames: int, *, name: str):
    if audio_in is None:
        return None, 1
    array = assert_BCF(audio_in, name=name)
    if array.shape[2] != frames:
        raise ValueError(f"{name}: expected {frames} frames, got {array.shape[2]}")
    return array, array.shape[0]


# =========================
# Graph nodes
# =========================
#
# Every node consumes the summed audio of its inputs (`audio_in`, shaped
# (B, C, F) or None when nothing is connected) and returns a new (B, C, F)
# block.  `params` maps each AudioParam name to its per-sample (F,) curve for
# the block being rendered.
class Node:
    """Base class for signal graph nodes."""

    # Nodes that only read their own history may close a feedback loop.
    breaks_cycles = False

    def __init__(self, name: str, params: Mapping[str, object] | None = None) -> None:
        self.name = name
        self.config = dict(params or {})
        self.audio_params: dict[str, AudioParam] = {}

    def add_param(self, name: str, value: float) -> AudioParam:
        param = AudioParam(f"{self.name}.{name}", value)
        self.audio_params[name] = param
        return param

    def receive_feedback(self, block: np.ndarray) -> None:
        raise TypeError(f"Node '{self.name}' cannot terminate a feedback edge")

    def process(self, frames, sr, audio_in, params):
        raise NotImplementedError


class OscillatorNode(Node):
    """Periodic source; silent until started and after being stopped."""

    def __init__(self, name, params=None):
        super().__init__(name, params)
        self.wave = Waveform(self.config.get("wave", Waveform.SINE)).value
        self.frequency = self.add_param("frequency", float(self.config.get("frequency", 440.0)))
        self._phase = float(self.config.get("phase", 0.0)) % 1.0
        self._running = False
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def phase(self) -> float:
        """Normalised phase [0, 1) of the next sample to be rendered."""
        return self._phase

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError(f"Oscillator '{self.name}' cannot be restarted once stopped")
        self._running = True

    def stop(self) -> None:
        self._running = False
        self._stopped = True

    def process(self, frames, sr, audio_in, params):
        _, batches = _ensure_bcf(audio_in, frames, name=f"{self.name}.in")
        if not self._running:
            return np.zeros((batches, 1, frames), dtype=RAW_DTYPE)
        freq = params.get("frequency")
        if freq is None:
            freq = np.full(frames, self.frequency.target, dtype=RAW_DTYPE)
        dphi = np.asarray(freq, dtype=RAW_DTYPE) / float(sr)
        steps = np.cumsum(dphi)
        phase = (self._phase + steps - dphi) % 1.0
        self._phase = float((self._phase + steps[-1]) % 1.0)
        wave = make_wave_hq(self.wave, phase, dphi)
        return np.broadcast_to(wave, (batches, 1, frames)).astype(RAW_DTYPE)


class GainNode(Node):
    def __init__(self, name, params=None):
        super().__init__(name, params)
        self.gain = self.add_param("gain", float(self.config.get("gain", 1.0)))

    def process(self, frames, sr, audio_in, params):
        if audio_in is None:
            return np.zeros((1, 1, frames), dtype=RAW_DTYPE)
        gain = params.get("gain")
        if gain is None:
            return audio_in * self.gain.target
        return audio_in * np.asarray(gain, dtype=RAW_DTYPE)[None, None, :]


class BiquadFilterNode(Node):
    """Resonant lowpass biquad.

    Coefficients follow the Audio EQ Cookbook lowpass with the resonance given
    in decibels (``alpha = sin(w0) / (2 * 10**(q/20))``), so ``q`` is the peak
    gain at the cutoff.  Coefficients are refreshed every ``SUB_BLOCK``
    samples while a ramp is in flight.
    """

    SUB_BLOCK = 32

    def __init__(self, name, params=None):
        super().__init__(name, params)
        self.ftype = str(self.config.get("type", "lowpass"))
        if self.ftype != "lowpass":
            raise ValueError(f"{name}: only lowpass filters are supported, got '{self.ftype}'")
        self.frequency = self.add_param("frequency", float(self.config.get("frequency", 1000.0)))
        self.q = self.add_param("q", float(self.config.get("q", 1.0)))
        self._zi: np.ndarray | None = None

    @staticmethod
    def coefficients(cutoff: float, q_db: float, sr: float) -> tuple[np.ndarray, np.ndarray]:
        nyquist = 0.5 * sr
        cutoff = min(max(float(cutoff), 1.0), nyquist * 0.999)
        w0 = 2.0 * math.pi * cutoff / sr
        cos_w0 = math.cos(w0)
        alpha = math.sin(w0) / (2.0 * 10.0 ** (q_db / 20.0))
        b0 = (1.0 - cos_w0) / 2.0
        b = np.array([b0, 1.0 - cos_w0, b0], dtype=RAW_DTYPE)
        a = np.array([1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha], dtype=RAW_DTYPE)
        return b / a[0], a / a[0]

    def _ensure(self, B, C):
        if self._zi is None or self._zi.shape[:2] != (B, C):
            self._zi = np.zeros((B, C, 2), dtype=RAW_DTYPE)

    def process(self, frames, sr, audio_in, params):
        if audio_in is None:
            return np.zeros((1, 1, frames), dtype=RAW_DTYPE)
        x = assert_BCF(audio_in, name=f"{self.name}.in")
        B, C, F = x.shape
        self._ensure(B, C)
        cutoff = params.get("frequency", np.full(F, self.frequency.target))
        q = params.get("q", np.full(F, self.q.target))
        ramping = cutoff[0] != cutoff[-1] or q[0] != q[-1]
        step = self.SUB_BLOCK if ramping else F
        out = np.empty_like(x, dtype=RAW_DTYPE)
        for start in range(0, F, step):
            stop = min(F, start + step)
            b, a = self.coefficients(cutoff[start], q[start], sr)
            y, zf = lfilter(b, a, x[:, :, start:stop], axis=2, zi=self._zi)
            out[:, :, start:stop] = y
            self._zi = zf
        return out


class DelayNode(Node):
    """Variable delay line with an optional feedback input.

    Each block is written into the ring before reading, so delays shorter than
    the block still work on the forward path.  When the node terminates a
    feedback edge (``in_cycle``) the feedback block arrives only after the
    block has been read, which is why the delay is then held at one block or
    more.
    """

    breaks_cycles = True

    def __init__(self, name, params=None):
        super().__init__(name, params)
        self.max_delay_seconds = float(self.config.get("max_delay_seconds", 1.0))
        self.delay_time = self.add_param("delay_time", float(self.config.get("delay_time", 0.0)))
        self.in_cycle = False
        self.buf: np.ndarray | None = None
        self.w = 0
        self._last_write = 0
        self._last_frames = 0

    def _ensure(self, B, C, sr):
        length = int(math.ceil(self.max_delay_seconds * sr)) + MAX_FRAMES + 2
        if self.buf is None or self.buf.shape != (B, C, length):
            self.buf = np.zeros((B, C, length), RAW_DTYPE)
            self.w = 0

    def process(self, frames, sr, audio_in, params):
        if audio_in is None:
            x = np.zeros((1, 1, frames), dtype=RAW_DTYPE)
        else:
            x = assert_BCF(audio_in, name=f"{self.name}.in")
        B, C, F = x.shape
        self._ensure(B, C, sr)
        length = self.buf.shape[2]

        write_idx = (self.w + np.arange(F)) % length
        self.buf[:, :, write_idx] = x

        seconds = params.get("delay_time", np.full(F, self.delay_time.target))
        lo = float(F) if self.in_cycle else 0.0
        delay = np.clip(np.asarray(seconds, dtype=RAW_DTYPE) * sr, lo, self.max_delay_seconds * sr)
        pos = self.w + np.arange(F, dtype=RAW_DTYPE) - delay
        i0 = np.floor(pos).astype(np.int64)
        frac = pos - i0
        a = self.buf[:, :, i0 % length]
        b = self.buf[:, :, (i0 + 1) % length]
        out = a * (1.0 - frac) + b * frac

        self._last_write = self.w
        self._last_frames = F
        self.w = (self.w + F) % length
        return out

    def receive_feedback(self, block: np.ndarray) -> None:
        if self.buf is None or self._last_frames == 0:
            return
        fb = assert_BCF(block, name=f"{self.name}.feedback")
        fb = match_channels(fb, self.buf.shape[1])
        idx = (self._last_write + np.arange(self._last_frames)) % self.buf.shape[2]
        self.buf[:, :, idx] += fb[:, :, : self._last_frames]


class ConvolverNode(Node):
    """Uniformly partitioned overlap-save convolution reverb.

    The impulse is split into partitions of one block each; their spectra are
    multiplied against a frequency-domain delay line of past input blocks.  A
    mono input convolved with a multi-channel impulse yields one output channel
    per impulse channel.
    """

    GAIN_CALIBRATION = 0.00125
    GAIN_CALIBRATION_SAMPLE_RATE = 44100.0
    MIN_POWER = 0.000125

    def __init__(self, name, params=None):
        super().__init__(name, params)
        impulse = np.asarray(self.config.get("impulse"), dtype=RAW_DTYPE)
        if impulse.ndim == 1:
            impulse = impulse[None, :]
        if impulse.ndim != 2 or impulse.shape[1] == 0:
            raise ValueError(f"{name}: impulse must be shaped (channels, length)")
        self.impulse = impulse
        self.normalize = bool(self.config.get("normalize", True))
        self._partition = 0
        self._spectra: np.ndarray | None = None
        self._fdl: np.ndarray | None = None
        self._prev: np.ndarray | None = None
        self._head = 0

    def normalization_scale(self, sr: float) -> float:
        power = math.sqrt(float(np.sum(self.impulse ** 2)) / self.impulse.size)
        scale = 1.0 / max(power, self.MIN_POWER)
        scale *= self.GAIN_CALIBRATION
        scale *= self.GAIN_CALIBRATION_SAMPLE_RATE / float(sr)
        return scale

    def _prepare(self, frames, sr):
        P = frames
        channels, length = self.impulse.shape
        K = max(1, -(-length // P))
        padded = np.zeros((channels, K * P), dtype=RAW_DTYPE)
        padded[:, :length] = self.impulse
        if self.normalize:
            padded *= self.normalization_scale(sr)
        parts = padded.reshape(channels, K, P)
        self._spectra = np.fft.rfft(parts, n=2 * P, axis=2)
        self._partition = P
        self._fdl = None

    def _ensure(self, B, C, frames, sr):
        if self._partition != frames or self._spectra is None:
            self._prepare(frames, sr)
        K = self._spectra.shape[1]
        bins = self._spectra.shape[2]
        if self._fdl is None or self._fdl.shape[:2] != (B, C):
            self._fdl = np.zeros((B, C, K, bins), dtype=np.complex128)
            self._prev = np.zeros((B, C, frames), dtype=RAW_DTYPE)
            self._head = 0

    def process(self, frames, sr, audio_in, params):
        channels = self.impulse.shape[0]
        if audio_in is None:
            x = np.zeros((1, 1, frames), dtype=RAW_DTYPE)
        else:
            x = assert_BCF(audio_in, name=f"{self.name}.in")
        if x.shape[1] not in (1, channels):
            x = match_channels(x, 1)
        B, C, F = x.shape
        self._ensure(B, C, F, sr)
        K = self._spectra.shape[1]

        frame = np.concatenate([self._prev, x], axis=2)
        self._prev = x.copy()
        self._fdl[:, :, self._head, :] = np.fft.rfft(frame, n=2 * F, axis=2)
        order = (self._head - np.arange(K)) % K
        history = self._fdl[:, :, order, :]
        if C == 1:
            spectrum = np.einsum("bks,oks->bos", history[:, 0], self._spectra)
        else:
            spectrum = np.einsum("bcks,cks->bcs", history, self._spectra)
        self._head = (self._head + 1) % K
        y = np.fft.irfft(spectrum, n=2 * F, axis=2)[:, :, F:]
        return np.ascontiguousarray(y, dtype=RAW_DTYPE)


class AnalyserNode(Node):
    """Pass-through node that exposes a smoothed byte magnitude spectrum."""

    def __init__(self, name, params=None):
        super().__init__(name, params)
        self.fft_size = int(self.config.get("fft_size", 256))
        self.smoothing = float(self.config.get("smoothing", 0.8))
        self.min_db = float(self.config.get("min_db", -100.0))
        self.max_db = float(self.config.get("max_db", -30.0))
        n = np.arange(self.fft_size)
        alpha = 0.16
        self._window = (
            (1 - alpha) / 2
            - 0.5 * np.cos(2 * np.pi * n / self.fft_size)
            + alpha / 2 * np.cos(4 * np.pi * n / self.fft_size)
        )
        self._ring = np.zeros(self.fft_size, dtype=RAW_DTYPE)
        self._smoothed = np.zeros(self.fft_size // 2, dtype=RAW_DTYPE)
        self._lock = threading.Lock()

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def process(self, frames, sr, audio_in, params):
        if audio_in is None:
            return np.zeros((1, 1, frames), dtype=RAW_DTYPE)
        x = assert_BCF(audio_in, name=f"{self.name}.in")
        mono = np.mean(x[0], axis=0)
        with self._lock:
            if mono.shape[0] >= self.fft_size:
                self._ring[:] = mono[-self.fft_size:]
            else:
                self._ring = np.concatenate([self._ring[mono.shape[0]:], mono])
        return x

    def get_float_time_domain_data(self) -> np.ndarray:
        with self._lock:
            return self._ring.copy()

    def get_float_frequency_data(self) -> np.ndarray:
        """Smoothed magnitude spectrum in dB; updates the smoothing state."""

        samples = self.get_float_time_domain_data()
        magnitude = np.abs(np.fft.rfft(samples * self._window))[: self.frequency_bin_count] / self.fft_size
        with self._lock:
            self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude
            smoothed = self._smoothed.copy()
        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(smoothed)

    def get_byte_frequency_data(self) -> np.ndarray:
        return db_to_byte(self.get_float_frequency_data(), self.min_db, self.max_db)


class MixNode(Node):
    """Summing bus; the graph already adds every input together."""

    def __init__(self, name, params=None):
        super().__init__(name, params)
        self.channels = self.config.get("channels")

    def process(self, frames, sr, audio_in, params):
        if audio_in is None:
            return np.zeros((1, int(self.channels or 1), frames), dtype=RAW_DTYPE)
        x = assert_BCF(audio_in, name=f"{self.name}.in")
        if self.channels:
            x = match_channels(x, int(self.channels))
        return x


class DestinationNode(Node):
    """Graph sink: matches the output channel count and hard-limits to [-1, 1]."""

    def __init__(self, name, params=None):
        super().__init__(name, params)
        self.channels = int(self.config.get("channels", 2))

    def process(self, frames, sr, audio_in, params):
        if audio_in is None:
            return np.zeros((1, self.channels, frames), dtype=RAW_DTYPE)
        x = match_channels(assert_BCF(audio_in, name=f"{self.name}.in"), self.channels)
        return np.clip(x, -1.0, 1.0)


def generate_reverb_impulse(
    sample_rate: int,
    seconds: float = 2.0,
    channels: int = 2,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Noise impulse with a squared linear decay, shaped (channels, length)."""

    rng = rng or np.random.default_rng()
    length = int(sample_rate * seconds)
    envelope = (1.0 - np.arange(length, dtype=RAW_DTYPE) / length) ** 2
    noise = rng.uniform(-1.0, 1.0, size=(channels, length))
    return noise * envelope[None, :]


NODE_TYPES = {
    "oscillator": OscillatorNode,
    "gain": GainNode,
    "biquad": BiquadFilterNode,
    "delay": DelayNode,
    "convolver": ConvolverNode,
    "analyser": AnalyserNode,
    "mix": MixNode,
    "destination": DestinationNode,
}


__all__ = [
    "NODE_TYPES",
    "Node",
    "OscillatorNode",
    "GainNode",
    "BiquadFilterNode",
    "DelayNode",
    "ConvolverNode",
    "AnalyserNode",
    "MixNode",
    "DestinationNode",
    "generate_reverb_impulse",
]
