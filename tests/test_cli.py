import sys
import wave

import pytest

from shapesynth.application import SynthApplication
from shapesynth.cli import main as cli_main
from shapesynth.config import DEFAULT_CONFIG_PATH


def test_cli_falls_back_to_summary_when_pygame_missing(capsys, monkeypatch):
    monkeypatch.setitem(sys.modules, "pygame", None)
    exit_code = cli_main(["--config", str(DEFAULT_CONFIG_PATH), "--no-audio"])
    assert exit_code == 0
    captured = capsys.readouterr()
    assert "pygame unavailable" in captured.out
    assert "Rendered 22050 frames" in captured.out


def test_cli_headless_writes_wav(tmp_path, capsys):
    output_path = tmp_path / "headless_output.wav"
    exit_code = cli_main(
        [
            "--headless",
            "--headless-frames",
            "512",
            "--headless-output",
            str(output_path),
        ]
    )
    assert exit_code == 0
    captured = capsys.readouterr()
    assert "Headless run requested." in captured.out
    assert "Rendered 512 frames @ 44100 Hz" in captured.out
    assert "Feedback: delay_feedback -> delay" in captured.out

    with wave.open(str(output_path), "rb") as wav_file:
        assert wav_file.getnchannels() == 2
        assert wav_file.getsampwidth() == 2
        assert wav_file.getframerate() == 44100
        assert wav_file.getnframes() == 512


def test_cli_rejects_non_positive_frames():
    with pytest.raises(SystemExit) as excinfo:
        cli_main(["--headless", "--headless-frames", "0"])
    assert excinfo.value.code == 2


def test_application_from_file():
    app = SynthApplication.from_file(str(DEFAULT_CONFIG_PATH))
    assert "Graph: not initialised" in app.summary()
    data = app.render(frames=16)
    assert data.shape == (app.config.runtime.output_channels, 16)
    assert not data.any()

    app.engine.initialize()
    summary = app.summary()
    assert "State: initialized-stopped" in summary
    assert "Waveform: sine" in summary
    assert "osc (OscillatorNode)" in summary
    chunked = app.render_frames(600)
    assert chunked.shape == (2, 600)
    app.engine.close()
