from shapesynth import diagnostics


def test_log_event_is_silent_when_disabled(tmp_path, monkeypatch):
    log_path = tmp_path / "events.log"
    monkeypatch.setattr(diagnostics, "_LOG_EVENTS", False)
    monkeypatch.setattr(diagnostics, "_LOG_PATH", log_path)
    diagnostics.log_event("engine.start")
    assert not log_path.exists()


def test_log_event_appends_timestamped_lines(tmp_path, monkeypatch):
    monkeypatch.setattr(diagnostics, "_LOG_EVENTS", False)
    monkeypatch.setattr(diagnostics, "_LOG_PATH", diagnostics._LOG_PATH)
    diagnostics.enable_event_logging(True)
    assert diagnostics.event_logging_enabled()
    diagnostics.set_log_path(tmp_path / "nested" / "events.log")
    diagnostics.log_event("engine.start")
    diagnostics.log_event("engine.stop")
    lines = (tmp_path / "nested" / "events.log").read_text().splitlines()
    assert [line.split(" ", 1)[1] for line in lines] == ["engine.start", "engine.stop"]
    float(lines[0].split(" ", 1)[0])
