from __future__ import annotations

import pytest

from vidpipe import config


@pytest.mark.parametrize(
    "value,expected",
    [(None, False), (True, True), ("1", True), (" Yes ", True), ("on", True), ("0", False), ("nope", False)],
)
def test_parse_bool(value, expected):
    assert config.parse_bool(value) is expected


def test_env_int_falls_back_on_garbage(monkeypatch):
    monkeypatch.setenv("VIDPIPE_TEST_INT", "12x")
    assert config._env_int("VIDPIPE_TEST_INT", 7) == 7
    monkeypatch.setenv("VIDPIPE_TEST_INT", "12")
    assert config._env_int("VIDPIPE_TEST_INT", 7) == 12


def test_env_float_falls_back_on_garbage(monkeypatch):
    monkeypatch.setenv("VIDPIPE_TEST_FLOAT", "slow")
    assert config._env_float("VIDPIPE_TEST_FLOAT", 1.5) == 1.5


def test_flask_config_allows_a_full_chunk(monkeypatch):
    monkeypatch.setattr(config, "MAX_CHUNK_BYTES", 1000)
    assert config.load_flask_config()["MAX_CONTENT_LENGTH"] > 1000


def test_validate_config_reports_problems(monkeypatch):
    monkeypatch.setattr(config, "JOB_MODE", "celery")
    monkeypatch.setattr(config, "CELERY_BROKER_URL", "")
    monkeypatch.setattr(config, "SESSION_TTL_HOURS", 0)

    problems = config.validate_config()

    assert any("VIDPIPE_CELERY_BROKER_URL" in p for p in problems)
    assert any("VIDPIPE_SESSION_TTL_HOURS" in p for p in problems)


def test_validate_config_rejects_unknown_mode(monkeypatch):
    monkeypatch.setattr(config, "JOB_MODE", "cron")
    assert config.validate_config() == [
        "VIDPIPE_JOB_MODE='cron' is not one of ['auto', 'celery', 'inline', 'thread']"
    ]


def test_default_config_is_valid():
    assert config.validate_config() == []
