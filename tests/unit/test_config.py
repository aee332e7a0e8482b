"""Unit tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from relay.core.config import Settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in (
        "RELAY_RATE_LIMIT_TOKENS_PER_SECOND",
        "RELAY_RATE_LIMIT_BURST_SIZE",
        "RELAY_DEDUP_TTL_S",
        "RELAY_ENVIRONMENT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = Settings()
    assert cfg.RATE_LIMIT_TOKENS_PER_SECOND == 10.0
    assert cfg.RATE_LIMIT_BURST_SIZE == 20
    assert cfg.RATE_LIMIT_MAX_SLEEP_S == 1.0
    assert cfg.DEDUP_TTL_S == 30.0
    assert cfg.BATCH_DELAY_S == 0.3
    assert cfg.FALLBACK_RETRY_MAX_ATTEMPTS == 2
    assert cfg.ENVIRONMENT == "development"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RELAY_RATE_LIMIT_TOKENS_PER_SECOND", "2.5")
    monkeypatch.setenv("RELAY_RATE_LIMIT_BURST_SIZE", "5")
    monkeypatch.setenv("RELAY_ENVIRONMENT", "production")

    cfg = Settings()
    assert cfg.RATE_LIMIT_TOKENS_PER_SECOND == 2.5
    assert cfg.RATE_LIMIT_BURST_SIZE == 5
    assert cfg.ENVIRONMENT == "production"


def test_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("RELAY_DEDUP_TTL_S=12\n")
    assert Settings().DEDUP_TTL_S == 12.0


@pytest.mark.parametrize(
    "name,value",
    [
        ("RELAY_RATE_LIMIT_TOKENS_PER_SECOND", "0"),
        ("RELAY_RATE_LIMIT_BURST_SIZE", "0"),
        ("RELAY_DEDUP_TTL_S", "-1"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        Settings()
