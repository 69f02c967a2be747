"""Pointer-controlled shape synthesiser application."""

from __future__ import annotations

import queue
import sys
import threading
import time
from collections import deque
from typing import Any, List, Optional, Tuple

from .analysis import LevelAnalyzer
from .application import SynthApplication, write_wav
from .config import DEFAULT_CONFIG_PATH, AppConfig, load_configuration
from .diagnostics import enable_event_logging, log_event
from .engine import SynthEngine
from .interaction import EventKind, InputEvent, InteractionController
from .output import AudioUnavailableError, NullOutput, SoundDeviceOutput
from .scene import ShapeScene
from .ui import HudPanel
from .utils import clamp

BACKGROUND = (10, 0, 20)
TARGET_FPS = 60
# Releases within this many pixels of the press still count as a click.
CLICK_SLOP_PX = 4


class AsyncThrottledPrinter:
    """Background printer that rate limits console output."""

    def __init__(
        self,
        *,
        window_seconds: float = 0.75,
        max_messages: int = 8,
    ) -> None:
        self._queue: "queue.Queue[tuple[str, str] | None]" = queue.Queue()
        self._history: deque[float] = deque()
        self._history_window = window_seconds
        self._max_messages = max_messages
        self._history_lock = threading.Lock()
        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                self._queue.task_done()
                break
            text, end = item
            try:
                sys.stdout.write(text)
                sys.stdout.write(end)
                sys.stdout.flush()
            finally:
                self._queue.task_done()

    def _prune_history(self, now: float) -> None:
        while self._history and now - self._history[0] > self._history_window:
            self._history.popleft()

    def emit(self, message: str, *, end: str = "\n", force: bool = False) -> bool:
        """Queue *message* for printing when under the rate limit.

        Returns ``True`` when the message is enqueued for output."""

        now = time.monotonic()
        with self._history_lock:
            self._prune_history(now)
            if not force and len(self._history) >= self._max_messages:
                return False
            self._history.append(now)
        self._queue.put((message, end))
        return True

    def flush(self) -> None:
        """Block until queued messages have been printed."""

        self._queue.join()


STATUS_PRINTER = AsyncThrottledPrinter()


class PygameInputAdapter:
    """Turn pygame mouse, touch and key events into :class:`InputEvent` objects.

    Pointer positions are normalised by the window size.  Wheel events are
    consumed here, which is the only place scrolling could happen.  A left
    button release within a few pixels of the press counts as a click and
    activates playback.  Touch input follows the first finger down.
    """

    def __init__(self, pygame_module: Any, size: Tuple[int, int]) -> None:
        self.pg = pygame_module
        self.size = (max(1, int(size[0])), max(1, int(size[1])))
        self._press: Optional[Tuple[int, int]] = None
        self._finger: Optional[int] = None

    @staticmethod
    def _is_click(press: Tuple[int, int], release: Tuple[int, int]) -> bool:
        return max(abs(release[0] - press[0]), abs(release[1] - press[1])) <= CLICK_SLOP_PX

    def _normalise(self, pos: Tuple[int, int]) -> Tuple[float, float]:
        width, height = self.size
        return clamp(pos[0] / width, 0.0, 1.0), clamp(pos[1] / height, 0.0, 1.0)

    def translate(self, event: Any) -> List[InputEvent]:
        pg = self.pg
        kind = event.type
        # SDL mirrors touches as mouse events; the FINGER* events already cover them.
        if getattr(event, "touch", False) and kind in (pg.MOUSEMOTION, pg.MOUSEBUTTONDOWN, pg.MOUSEBUTTONUP):
            return []
        if kind == pg.VIDEORESIZE:
            self.size = (max(1, int(event.w)), max(1, int(event.h)))
            return []
        if kind == pg.MOUSEMOTION:
            x, y = self._normalise(event.pos)
            return [InputEvent(EventKind.POINTER_MOVE, x, y)]
        if kind == pg.MOUSEBUTTONDOWN and event.button == 1:
            self._press = tuple(event.pos)
            x, y = self._normalise(event.pos)
            return [InputEvent(EventKind.POINTER_DOWN, x, y)]
        if kind == pg.MOUSEBUTTONUP and event.button == 1:
            x, y = self._normalise(event.pos)
            events = [InputEvent(EventKind.POINTER_UP, x, y)]
            if self._press is not None and self._is_click(self._press, event.pos):
                events.append(InputEvent(EventKind.ACTIVATE, x, y))
            self._press = None
            return events
        if kind == pg.MOUSEWHEEL:
            if event.y == 0:
                return []
            # Scrolling up is a negative delta, as in a browser wheel event.
            return [InputEvent(EventKind.WHEEL, delta_y=-float(event.y))]
        if kind in (pg.FINGERDOWN, pg.FINGERMOTION, pg.FINGERUP):
            # Only the first finger down drives the pointer until it lifts.
            finger = getattr(event, "finger_id", 0)
            if self._finger is None and kind == pg.FINGERDOWN:
                self._finger = finger
            if finger != self._finger:
                return []
            if kind == pg.FINGERUP:
                self._finger = None
            x, y = clamp(float(event.x), 0.0, 1.0), clamp(float(event.y), 0.0, 1.0)
            mapped = {
                pg.FINGERDOWN: EventKind.POINTER_DOWN,
                pg.FINGERMOTION: EventKind.POINTER_MOVE,
                pg.FINGERUP: EventKind.POINTER_UP,
            }[kind]
            return [InputEvent(mapped, x, y)]
        if kind == pg.KEYDOWN:
            key = getattr(event, "unicode", "")
            if key:
                return [InputEvent(EventKind.KEY, key=key)]
        return []


def press_hud_button(hud: HudPanel, controller: InteractionController, pos: Tuple[int, int]) -> bool:
    """Apply the HUD button under ``pos``; ``False`` when the press missed every button."""

    hit = hud.button_at(pos)
    if hit is None:
        return False
    group, option = hit
    if group == "shape":
        controller.change_shape(option)
    else:
        controller.change_waveform(option)
    return True


def _render_summary(
    config: AppConfig,
    reason: str,
    *,
    frames: Optional[int] = None,
    output_path: Optional[str] = None,
) -> int:
    app = SynthApplication.from_config(config)
    app.engine.initialize()
    app.engine.start()
    total = int(frames) if frames else config.sample_rate // 2
    buffer = app.render_frames(total)
    level = app.analyzer.level()
    STATUS_PRINTER.emit(reason, force=True)
    STATUS_PRINTER.emit(app.summary(), force=True)
    peak = float(buffer.max()) if buffer.size else 0.0
    trough = float(buffer.min()) if buffer.size else 0.0
    STATUS_PRINTER.emit(
        f"Rendered {buffer.shape[1]} frames @ {config.sample_rate} Hz "
        f"(peak {peak:.3f}, trough {trough:.3f}, level {level:.3f})",
        force=True,
    )
    if output_path:
        write_wav(output_path, buffer, config.sample_rate)
        STATUS_PRINTER.emit(f"Wrote {output_path}", force=True)
    app.engine.close()
    STATUS_PRINTER.flush()
    return 0


def _pump_silent_engine(engine: SynthEngine, seconds: float) -> None:
    # Without an output stream nothing pulls audio, so advance the graph here.
    frames = int(round(seconds * engine.sample_rate))
    while frames > 0:
        size = min(frames, engine.frames_per_chunk)
        engine.render(size)
        frames -= size


def run(
    *,
    no_audio: bool = False,
    headless: bool = False,
    config_path: str | None = None,
    headless_frames: int | None = None,
    headless_output: str | None = None,
    log_events: bool = False,
) -> int:
    """Launch the synthesiser.

    Parameters
    ----------
    no_audio:
        Never open the sounddevice output stream.  The graph is still
        rendered each frame so the visuals react.
    headless:
        Render the graph without initialising pygame and print a summary.
    config_path:
        Optional configuration override.
    headless_frames:
        Total frames rendered by the summary run.
    headless_output:
        Write the summary render to this 16-bit WAV file.
    log_events:
        Append engine events to ``logs/engine_events.log``.
    """

    cfg_path = config_path or str(DEFAULT_CONFIG_PATH)
    config = load_configuration(cfg_path)
    if log_events or config.runtime.log_events:
        enable_event_logging(True)

    def render_summary(reason: str) -> int:
        return _render_summary(config, reason, frames=headless_frames, output_path=headless_output)

    if headless:
        return render_summary("Headless run requested.")

    try:
        import pygame
    except ImportError as exc:  # pragma: no cover - exercised only when pygame missing
        return render_summary(f"pygame unavailable, running summary instead: {exc}")

    output_factory = NullOutput if no_audio else SoundDeviceOutput.create
    engine = SynthEngine.from_config(config, output_factory=output_factory)
    analyzer = LevelAnalyzer(engine)

    pygame.init()
    pygame.display.set_caption("Shape Synth")
    screen = pygame.display.set_mode(config.runtime.window_size, pygame.RESIZABLE)
    pygame.font.init()
    font = pygame.font.SysFont("monospace", 16)

    scene = ShapeScene()
    hud = HudPanel()
    controller = InteractionController(scene, engine, hud)
    adapter = PygameInputAdapter(pygame, screen.get_size())
    clock = pygame.time.Clock()

    if no_audio:
        STATUS_PRINTER.emit("[Audio] Skipping output initialisation (no-audio mode).", force=True)
    STATUS_PRINTER.emit("Click or press space to start. Move to filter, drag for delay/reverb, scroll for pitch.", force=True)
    STATUS_PRINTER.emit("Keys 1-4 pick a shape, q/w/e/r pick a waveform.", force=True)

    frame_count = 0
    fps_time = time.monotonic()
    running = True
    hud_press = False
    try:
        while running:
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    running = False
                    break
                # Presses on a HUD button never reach the canvas, nor do their releases.
                if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                    hud_press = press_hud_button(hud, controller, event.pos)
                    if hud_press:
                        continue
                if event.type == pygame.MOUSEBUTTONUP and hud_press:
                    hud_press = False
                    continue
                for item in adapter.translate(event):
                    try:
                        controller.handle(item)
                    except AudioUnavailableError as exc:
                        hud.set_text("status", "Audio unavailable")
                        STATUS_PRINTER.emit(f"[Audio] {exc}", force=True)
                        log_event(f"app.activate failed: {exc}")
            if not running:
                break

            dt = clock.tick(TARGET_FPS) / 1000.0
            if no_audio and engine.initialized:
                _pump_silent_engine(engine, dt)

            scene.set_audio_level(analyzer.level())
            scene.update(dt)

            surface = pygame.display.get_surface()
            if surface:
                surface.fill(BACKGROUND)
                scene.draw(surface)
                hud.draw(surface, font)
                pygame.display.flip()

            frame_count += 1
            now = time.monotonic()
            if now - fps_time > 1.0:
                hud.set_text("fps", f"{round(frame_count / (now - fps_time))} FPS")
                frame_count = 0
                fps_time = now
    finally:
        engine.close()
        pygame.quit()
        STATUS_PRINTER.flush()

    return 0


__all__ = ["AsyncThrottledPrinter", "PygameInputAdapter", "STATUS_PRINTER", "press_hud_button", "run"]
