import logging
from pathlib import Path

import pytest

from doc_converter.config import Settings, parse_duration
from doc_converter.logging_utils import ROOT_LOGGER, setup_logging


@pytest.mark.parametrize(
    "value,seconds",
    [
        ("90", 90.0),
        ("45s", 45.0),
        ("30m", 1800.0),
        ("1h", 3600.0),
        ("1h30m", 5400.0),
        ("1.5h", 5400.0),
        ("250ms", 0.25),
        (" 2H ", 7200.0),
    ],
)
def test_parse_duration(value: str, seconds: float) -> None:
    assert parse_duration(value) == pytest.approx(seconds)


@pytest.mark.parametrize("value", ["", "h", "10x", "1h-5m", "soon"])
def test_parse_duration_rejects_garbage(value: str) -> None:
    with pytest.raises(ValueError):
        parse_duration(value)


def test_defaults_without_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("APP_TEMP_DIR", "CLEANUP_INTERVAL", "RETENTION_PERIOD", "DATABASE_URL", "CONVERTER_BINARY"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.temp_dir == Path("/tmp/converter").resolve()
    assert settings.cleanup_interval == 3600.0
    assert settings.retention_period == 24 * 3600.0
    assert settings.converter_binary == "libreoffice"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("APP_TEMP_DIR", str(tmp_path))
    monkeypatch.setenv("CLEANUP_INTERVAL", "10m")
    monkeypatch.setenv("RETENTION_PERIOD", "2h")
    monkeypatch.setenv("MAX_UPLOAD_MB", "5")
    monkeypatch.setenv("RELOAD", "yes")

    settings = Settings.from_env()

    assert settings.temp_dir == tmp_path.resolve()
    assert settings.cleanup_interval == 600.0
    assert settings.retention_period == 7200.0
    assert settings.max_upload_mb == 5
    assert settings.reload is True


@pytest.mark.parametrize("raw", ["forever", "0", "-5m"])
def test_bad_durations_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("CLEANUP_INTERVAL", raw)

    assert Settings.from_env().cleanup_interval == 3600.0


def test_setup_logging_is_idempotent() -> None:
    logger = setup_logging("debug")
    handlers = list(logger.handlers)

    again = setup_logging("warn")

    assert again is logger
    assert again.handlers == handlers
    assert again.level == logging.WARNING
    assert logger.name == ROOT_LOGGER
    assert setup_logging("nonsense").level == logging.INFO
