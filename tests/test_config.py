import json
from pathlib import Path

import pytest

from shapesynth.config import DEFAULT_CONFIG_PATH, AppConfig, SynthConfig, load_configuration


def _write(tmp_path: Path, payload) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(payload))
    return path


def test_default_configuration_loads() -> None:
    config = load_configuration(DEFAULT_CONFIG_PATH)
    assert isinstance(config, AppConfig)
    assert config.sample_rate == 44100
    assert config.runtime.output_channels == 2
    assert config.runtime.frames_per_chunk == 256
    assert config.runtime.window_size == (1280, 800)
    assert config.synth == SynthConfig()


def test_missing_sections_fall_back_to_defaults(tmp_path: Path) -> None:
    config = load_configuration(_write(tmp_path, {"sample_rate": 22050}))
    assert config.sample_rate == 22050
    assert config.runtime.frames_per_chunk == 256
    assert config.synth.delay_feedback == pytest.approx(0.4)


def test_synth_values_are_cast(tmp_path: Path) -> None:
    config = load_configuration(_write(tmp_path, {"synth": {"fft_size": "512", "play_gain": 1}}))
    assert config.synth.fft_size == 512
    assert isinstance(config.synth.play_gain, float)


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"runtime": {"output_channels": 6}}, "output_channels"),
        ({"runtime": {"frames_per_chunk": 0}}, "frames_per_chunk"),
        ({"runtime": {"window_size": [640]}}, "window_size"),
        ({"synth": {"fft_size": 300}}, "fft_size"),
        ({"synth": {"impulse_seconds": 0}}, "impulse_seconds"),
        ({"synth": {"max_delay_seconds": 0.25}}, "max_delay_seconds"),
        ({"synth": {"ramp_seconds": "fast"}}, "synth.ramp_seconds"),
        ({"sample_rate": -1}, "sample_rate"),
    ],
)
def test_invalid_configuration_is_rejected(tmp_path: Path, payload, message) -> None:
    with pytest.raises(ValueError) as excinfo:
        load_configuration(_write(tmp_path, payload))
    assert message in str(excinfo.value)
