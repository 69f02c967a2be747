"""Opt-in engine event log.

Control-path events (initialisation, playback toggles, waveform swaps,
output failures) are appended to ``logs/engine_events.log`` when enabled.
Nothing is written from the audio callback.
"""
from __future__ import annotations

import os
import threading
import time
from pathlib import Path

__all__ = ["enable_event_logging", "event_logging_enabled", "log_event", "set_log_path"]


_ENV_FLAG = "SHAPESYNTH_LOG_EVENTS"
_LOG_EVENTS = os.environ.get(_ENV_FLAG, "").lower() in {"1", "true", "yes", "on"}
_LOG_PATH = Path("logs/engine_events.log")
_LOG_LOCK = threading.Lock()


def enable_event_logging(enabled: bool) -> None:
    """Enable or disable the engine event log."""

    global _LOG_EVENTS
    _LOG_EVENTS = bool(enabled)


def event_logging_enabled() -> bool:
    """Return ``True`` when engine events are being logged."""

    return _LOG_EVENTS


def set_log_path(path: str | Path) -> None:
    global _LOG_PATH
    _LOG_PATH = Path(path)


def log_event(message: str) -> None:
    """Append a timestamped ``message`` to the event log when logging is enabled."""

    if not _LOG_EVENTS:
        return
    try:
        _LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        return
    line = f"{time.time():.6f} {message}\n"
    try:
        with _LOG_LOCK:
            with _LOG_PATH.open("a", encoding="utf-8") as handle:
                handle.write(line)
    except OSError:
        return
