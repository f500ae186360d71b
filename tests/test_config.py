import pytest

from fusion_rebalancer.config import BATCH_REQUIRED, Settings
from fusion_rebalancer.errors import ConfigurationError


def test_defaults():
    s = Settings(_env_file=None)

    assert s.port == 3000
    assert s.rebalancing_interval == 60_000
    assert s.offset == 0.01
    assert s.chain_id == 8453


def test_missing_secrets_abort(monkeypatch):
    monkeypatch.setenv("NODE_URL", "https://base.example")
    monkeypatch.setenv("DEV_PORTAL_API_TOKEN", "   ")
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    s = Settings(_env_file=None)

    assert s.missing_required() == ["private_key", "dev_portal_api_token"]
    with pytest.raises(ConfigurationError, match="PRIVATE_KEY, DEV_PORTAL_API_TOKEN"):
        s.require()


def test_batch_mode_does_not_need_server_key(monkeypatch):
    monkeypatch.setenv("NODE_URL", "https://base.example")
    monkeypatch.setenv("DEV_PORTAL_API_TOKEN", "token")
    monkeypatch.delenv("PRIVATE_KEY", raising=False)

    Settings(_env_file=None).require(BATCH_REQUIRED)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("REBALANCING_INTERVAL", "5000")
    monkeypatch.setenv("OFFSET", "0.05")
    monkeypatch.setenv("PORT", "3001")
    s = Settings(_env_file=None)

    assert (s.rebalancing_interval, s.offset, s.port) == (5000, 0.05, 3001)
