import pytest

from quickrank.core.config import Config, _parse_bool, _parse_float, _parse_int

SETTINGS = (
    "DEBUG",
    "API_BASE_URL",
    "API_TOKEN",
    "SINGLE_POLL_INTERVAL_SECONDS",
    "BATCH_POLL_INTERVAL_SECONDS",
    "MAX_CONSECUTIVE_POLL_FAILURES",
    "PIPELINE_DEADLINE_SECONDS",
    "HTTP_TIMEOUT_SECONDS",
    "UPLOAD_TIMEOUT_SECONDS",
    "REVOKE_REMOTE_ON_CANCEL",
    "LOG_LEVEL",
)


def test_parse_bool_variants():
    assert _parse_bool("yes") is True
    assert _parse_bool(" ON ") is True
    assert _parse_bool("0") is False
    assert _parse_bool("off") is False
    assert _parse_bool("maybe", default=True) is True
    assert _parse_bool(None) is False


def test_parse_int_bounds_and_fallback():
    assert _parse_int("12", 3) == 12
    assert _parse_int("abc", 3) == 3
    assert _parse_int(None, 3) == 3
    assert _parse_int("-5", 3, min_value=0) == 0
    assert _parse_int("500", 3, max_value=100) == 100


def test_parse_float_bounds_and_fallback():
    assert _parse_float("1.25", 2.0) == 1.25
    assert _parse_float("", 2.0) == 2.0
    assert _parse_float("-1", 2.0, min_value=0.0) == 0.0


def test_config_defaults(monkeypatch):
    for key in SETTINGS:
        monkeypatch.delenv(key, raising=False)

    cfg = Config()

    assert cfg.API_BASE_URL == "http://localhost:3000/api"
    assert cfg.API_TOKEN == ""
    assert cfg.SINGLE_POLL_INTERVAL_SECONDS == 1.5
    assert cfg.BATCH_POLL_INTERVAL_SECONDS == 2.5
    assert cfg.MAX_CONSECUTIVE_POLL_FAILURES == 40
    assert cfg.PIPELINE_DEADLINE_SECONDS == 0.0
    assert cfg.REVOKE_REMOTE_ON_CANCEL is False
    assert cfg.LOG_LEVEL == "INFO"
    assert cfg.DEBUG is False


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "https://api.example.org/v1/")
    monkeypatch.setenv("API_TOKEN", "  secret  ")
    monkeypatch.setenv("BATCH_POLL_INTERVAL_SECONDS", "4")
    monkeypatch.setenv("MAX_CONSECUTIVE_POLL_FAILURES", "-3")
    monkeypatch.setenv("REVOKE_REMOTE_ON_CANCEL", "true")
    monkeypatch.setenv("LOG_DIRECTORY", "/tmp/quickrank-logs")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    cfg = Config()

    assert cfg.API_BASE_URL == "https://api.example.org/v1"
    assert cfg.API_TOKEN == "secret"
    assert cfg.BATCH_POLL_INTERVAL_SECONDS == 4.0
    assert cfg.MAX_CONSECUTIVE_POLL_FAILURES == 0
    assert cfg.REVOKE_REMOTE_ON_CANCEL is True
    assert cfg.LOG_DIRECTORY == "/tmp/quickrank-logs/"
    assert cfg.LOG_LEVEL == "DEBUG"


def test_validate_configuration_rejects_bad_scheme(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "ftp://files.example.org")
    with pytest.raises(ValueError, match="API_BASE_URL"):
        Config().validate_configuration()


def test_validate_configuration_rejects_bad_log_level(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "http://localhost:3000/api")
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValueError, match="LOG_LEVEL"):
        Config().validate_configuration()
