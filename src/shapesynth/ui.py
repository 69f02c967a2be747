"""Heads-up display holding the parameter readouts and button states."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from .state import Shape, Waveform

DEFAULT_TEXT: Dict[str, str] = {
    "freq-display": "440 Hz",
    "filter-display": "1000 Hz",
    "q-display": "5.0",
    "reverb-display": "30%",
    "delay-display": "200ms",
    "status": "Click to start",
    "fps": "",
}

_LABELS: Tuple[Tuple[str, str], ...] = (
    ("freq-display", "Frequency"),
    ("filter-display", "Filter"),
    ("q-display", "Resonance"),
    ("reverb-display", "Reverb"),
    ("delay-display", "Delay"),
)

_GROUPS: Dict[str, Tuple[str, ...]] = {
    "shape": tuple(shape.value for shape in Shape),
    "wave": tuple(wave.value for wave in Waveform),
}

TEXT_COLOUR = (220, 220, 235)
ACTIVE_COLOUR = (0, 212, 255)
IDLE_COLOUR = (120, 120, 140)
BUTTON_GAP = 8

Rect = Tuple[int, int, int, int]


class HudPanel:
    """Keyed text labels plus one active entry per button group."""

    def __init__(self) -> None:
        self.text: Dict[str, str] = dict(DEFAULT_TEXT)
        self.active: Dict[str, str] = {"shape": Shape.ICOSAHEDRON.value, "wave": Waveform.SINE.value}
        self._buttons: List[Tuple[Rect, str, str]] = []

    def set_text(self, key: str, text: str) -> None:
        self.text[key] = text

    def set_active(self, group: str, value: str) -> None:
        if group not in _GROUPS:
            raise KeyError(f"Unknown button group '{group}'")
        self.active[group] = str(value)

    def lines(self) -> List[Tuple[str, Tuple[int, int, int]]]:
        out = [(f"{label:<10} {self.text.get(key, '')}", TEXT_COLOUR) for key, label in _LABELS]
        for group, options in _GROUPS.items():
            chosen = self.active.get(group)
            marks = " ".join(f"[{opt}]" if opt == chosen else opt for opt in options)
            out.append((f"{group:<10} {marks}", ACTIVE_COLOUR))
        out.append((self.text.get("status", ""), ACTIVE_COLOUR))
        return out

    def draw(self, surface: Any, font: Any) -> None:
        x, y = 16, 16
        step = font.get_linesize() + 2
        buttons: List[Tuple[Rect, str, str]] = []
        for key, label in _LABELS:
            surface.blit(font.render(f"{label:<10} {self.text.get(key, '')}", True, TEXT_COLOUR), (x, y))
            y += step
        for group, options in _GROUPS.items():
            caption = font.render(f"{group:<10} ", True, TEXT_COLOUR)
            surface.blit(caption, (x, y))
            bx = x + caption.get_width()
            for option in options:
                colour = ACTIVE_COLOUR if option == self.active.get(group) else IDLE_COLOUR
                rendered = font.render(f"[{option}]", True, colour)
                surface.blit(rendered, (bx, y))
                buttons.append(((bx, y, rendered.get_width(), step), group, option))
                bx += rendered.get_width() + BUTTON_GAP
            y += step
        surface.blit(font.render(self.text.get("status", ""), True, ACTIVE_COLOUR), (x, y))
        fps = self.text.get("fps")
        if fps:
            rendered = font.render(fps, True, IDLE_COLOUR)
            surface.blit(rendered, (surface.get_width() - rendered.get_width() - 16, 16))
        self._buttons = buttons

    def button_at(self, pos: Tuple[int, int]) -> Optional[Tuple[str, str]]:
        """``(group, option)`` of the button drawn under ``pos``, if any."""

        px, py = pos
        for (bx, by, width, height), group, option in self._buttons:
            if bx <= px < bx + width and by <= py < by + height:
                return group, option
        return None


__all__ = ["DEFAULT_TEXT", "HudPanel"]
