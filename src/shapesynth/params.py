"""Parameter store and the ramped automation primitive used by live nodes."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, Mapping, Tuple

import numpy as np

from .state import PARAMETER_DEFAULTS, PARAMETER_RANGES
from .utils import RAW_DTYPE, clamp, linear_segment


@dataclass(slots=True)
class Parameter:
    """A named, bounded scalar with its rendered (current) and requested (target) values."""

    name: str
    minimum: float
    maximum: float
    current: float
    target: float

    def __post_init__(self) -> None:
        if self.minimum > self.maximum:
            raise ValueError(f"{self.name}: minimum {self.minimum} exceeds maximum {self.maximum}")
        self.current = self.clamp(self.current)
        self.target = self.clamp(self.target)

    def clamp(self, value: float) -> float:
        return float(clamp(float(value), self.minimum, self.maximum))


class ParameterStore:
    """Current/target values for every controllable audio parameter.

    ``target`` is written by control code through :meth:`request`; ``current``
    follows the live node and is updated by the engine after each block.

    Every write is clamped into the parameter's declared range; nothing here
    ever rejects a value.  Unknown names are programming errors and raise
    ``KeyError``.
    """

    def __init__(
        self,
        ranges: Mapping[str, Tuple[float, float]] | None = None,
        defaults: Mapping[str, float] | None = None,
    ) -> None:
        ranges = dict(ranges or PARAMETER_RANGES)
        defaults = dict(defaults or PARAMETER_DEFAULTS)
        self._params: Dict[str, Parameter] = {}
        for name, (lo, hi) in ranges.items():
            initial = float(defaults.get(name, lo))
            self._params[name] = Parameter(name, float(lo), float(hi), initial, initial)

    def __contains__(self, name: object) -> bool:
        return name in self._params

    def __iter__(self):
        return iter(self._params)

    def get(self, name: str) -> Parameter:
        try:
            return self._params[name]
        except KeyError as exc:
            raise KeyError(f"Unknown parameter '{name}'") from exc

    def value(self, name: str) -> float:
        return self.get(name).current

    def request(self, name: str, value: float) -> float:
        """Clamp ``value``, record it as the new target and return it."""

        param = self.get(name)
        accepted = param.clamp(value)
        param.target = accepted
        return accepted

    def settle(self, name: str, value: float) -> None:
        """Record the instantaneous node value as ``current`` (clamped)."""

        param = self.get(name)
        param.current = param.clamp(value)

    def snapshot(self) -> Dict[str, float]:
        return {name: param.current for name, param in self._params.items()}


class AudioParam:
    """Automatable node parameter holding at most one linear ramp.

    Ramps are expressed on the graph timeline (seconds since the graph
    started).  A new ramp always starts from the instantaneous value at the
    moment it is scheduled, so re-targeting mid-flight never jumps.  The
    control thread schedules while the audio thread reads ``curve``; both go
    through a lock around an immutable ramp tuple.
    """

    __slots__ = ("name", "_lock", "_ramp")

    def __init__(self, name: str, value: float) -> None:
        self.name = name
        self._lock = Lock()
        value = float(value)
        # (start_time, start_value, end_time, end_value)
        self._ramp: Tuple[float, float, float, float] = (0.0, value, 0.0, value)

    @staticmethod
    def _evaluate(ramp: Tuple[float, float, float, float], time: float) -> float:
        t0, y0, t1, y1 = ramp
        if time >= t1:
            return y1
        if time <= t0:
            return y0
        return y0 + (y1 - y0) * (time - t0) / (t1 - t0)

    def value_at(self, time: float) -> float:
        with self._lock:
            ramp = self._ramp
        return self._evaluate(ramp, float(time))

    @property
    def target(self) -> float:
        with self._lock:
            return self._ramp[3]

    def copy_from(self, other: "AudioParam") -> None:
        """Adopt the ramp of ``other`` so both produce identical values."""

        with other._lock:
            ramp = other._ramp
        with self._lock:
            self._ramp = ramp

    def set_value(self, value: float) -> None:
        value = float(value)
        with self._lock:
            self._ramp = (0.0, value, 0.0, value)

    def linear_ramp_to(self, value: float, now: float, duration: float) -> None:
        now = float(now)
        with self._lock:
            start = self._evaluate(self._ramp, now)
            self._ramp = (now, start, now + max(0.0, float(duration)), float(value))

    def curve(self, start_time: float, frames: int, sample_rate: float) -> np.ndarray:
        """Per-sample values for ``frames`` samples starting at ``start_time``."""

        with self._lock:
            ramp = self._ramp
        t0, y0, t1, y1 = ramp
        end_time = start_time + frames / float(sample_rate)
        if start_time >= t1:
            return np.full(frames, y1, dtype=RAW_DTYPE)
        if end_time <= t0:
            return np.full(frames, y0, dtype=RAW_DTYPE)
        times = start_time + np.arange(frames, dtype=RAW_DTYPE) / float(sample_rate)
        return linear_segment(y0, y1, t0, t1, times)


__all__ = ["AudioParam", "Parameter", "ParameterStore"]
