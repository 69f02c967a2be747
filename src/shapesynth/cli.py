"""Command line entry point for the synthesiser."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from .config import DEFAULT_CONFIG_PATH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Shape synthesiser entry point")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to configuration file")
    parser.add_argument(
        "--no-audio",
        action="store_true",
        help="Skip initialising audio output (useful in CI or debugging)",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Render the synth graph without launching the interactive UI",
    )
    parser.add_argument(
        "--headless-frames",
        type=int,
        help="Total number of frames rendered by the headless run",
    )
    parser.add_argument(
        "--headless-output",
        type=Path,
        help="Optional path to write the headless render as 16-bit WAV",
    )
    parser.add_argument(
        "--log-events",
        action="store_true",
        help="Append engine events to logs/engine_events.log",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.headless_frames is not None and args.headless_frames <= 0:
        parser.error("--headless-frames must be positive")

    from .app import run as run_app

    return run_app(
        no_audio=args.no_audio,
        headless=args.headless,
        config_path=str(args.config),
        headless_frames=args.headless_frames,
        headless_output=str(args.headless_output) if args.headless_output else None,
        log_events=args.log_events,
    )


__all__ = ["main", "build_parser"]
