"""Tests for settings configuration loading."""

from __future__ import annotations

from textwrap import dedent

import pytest

from nectar_agent.settings import AgentSettings, RiskLevel, Strategy, StrategySettings


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep stray env vars and local config files out of every test."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in (
        "NECTAR_AGENT_CONFIG",
        "NECTAR_AGENT_PRIVATE_KEY",
        "NECTAR_AGENT_DECISION_API_KEY",
        "NECTAR_AGENT_RPC_URLS",
        "NECTAR_AGENT_DRY_RUN",
    ):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def write_config(tmp_path, body: str):
    config_path = tmp_path / "config.toml"
    config_path.write_text(dedent(body).strip())
    return config_path


def test_defaults_are_safe():
    settings = AgentSettings()

    assert settings.dry_run is True
    assert settings.strategy is Strategy.AI
    assert settings.rpc_urls
    assert settings.strategy_defaults.risk_level is RiskLevel.MEDIUM
    assert settings.strategy_defaults.rebalance_cooldown_hours == 6


def test_loads_toml_config(tmp_path, monkeypatch):
    config_path = write_config(
        tmp_path,
        """
        dry_run = false
        strategy = "rules"
        rpc_urls = ["https://rpc-a.example", "https://rpc-b.example"]
        dust_floor_usd = 2.5

        [strategy_defaults]
        risk_level = "low"
        apy_threshold = 1.5
        whitelisted_protocols = ["Venus", " aave "]
        """,
    )
    monkeypatch.setenv("NECTAR_AGENT_CONFIG", str(config_path))

    settings = AgentSettings()

    assert settings.dry_run is False
    assert settings.strategy is Strategy.RULES
    assert settings.rpc_urls == ["https://rpc-a.example", "https://rpc-b.example"]
    assert settings.dust_floor_usd == 2.5
    assert settings.strategy_defaults.risk_level is RiskLevel.LOW
    assert settings.strategy_defaults.apy_threshold == 1.5
    assert settings.strategy_defaults.whitelisted_protocols == ["venus", "aave"]


def test_namespaced_table_is_accepted(tmp_path, monkeypatch):
    config_path = write_config(
        tmp_path,
        """
        [nectar_agent]
        rebalance_interval_minutes = 10
        """,
    )
    monkeypatch.setenv("NECTAR_AGENT_CONFIG", str(config_path))

    assert AgentSettings().rebalance_interval_minutes == 10


@pytest.mark.parametrize("secret", ["private_key", "decision_api_key"])
def test_secrets_in_toml_are_rejected(tmp_path, monkeypatch, secret):
    config_path = write_config(tmp_path, f'{secret} = "0xdeadbeef"')
    monkeypatch.setenv("NECTAR_AGENT_CONFIG", str(config_path))

    with pytest.raises(ValueError, match="Security violation"):
        AgentSettings()


def test_env_overrides_file_and_cli_overrides_env(tmp_path, monkeypatch):
    config_path = write_config(tmp_path, "rebalance_interval_minutes = 10")
    monkeypatch.setenv("NECTAR_AGENT_CONFIG", str(config_path))
    monkeypatch.setenv("NECTAR_AGENT_REBALANCE_INTERVAL_MINUTES", "20")

    assert AgentSettings().rebalance_interval_minutes == 20
    assert AgentSettings(rebalance_interval_minutes=5).rebalance_interval_minutes == 5


def test_rpc_urls_accept_comma_separated_env(monkeypatch):
    monkeypatch.setenv(
        "NECTAR_AGENT_RPC_URLS", "https://rpc-a.example, ,https://rpc-b.example"
    )

    settings = AgentSettings()

    assert settings.rpc_urls == ["https://rpc-a.example", "https://rpc-b.example"]


def test_empty_rpc_urls_are_rejected():
    with pytest.raises(ValueError, match="rpc_urls"):
        AgentSettings(rpc_urls=[])


def test_secrets_are_redacted(monkeypatch):
    monkeypatch.setenv("NECTAR_AGENT_PRIVATE_KEY", "0x" + "11" * 32)

    settings = AgentSettings(decision_api_key="sk-live")
    safe = settings.as_safe_dict()

    assert safe["private_key"] == "***redacted***"
    assert safe["decision_api_key"] == "***redacted***"
    assert "sk-live" not in repr(settings)
    assert settings.decision_api_key_required == "sk-live"
    assert settings.private_key_required == "0x" + "11" * 32


def test_missing_secret_accessors_raise():
    settings = AgentSettings()

    with pytest.raises(ValueError, match="private_key"):
        settings.private_key_required
    with pytest.raises(ValueError, match="decision_api_key"):
        settings.decision_api_key_required


def test_strategy_overrides_are_merged():
    defaults = StrategySettings()

    merged = defaults.merged({"min_tvl": 1_000_000, "risk_level": "high", "x": 1})

    assert merged.min_tvl == 1_000_000
    assert merged.risk_level is RiskLevel.HIGH
    assert merged.apy_threshold == defaults.apy_threshold
    assert defaults.min_tvl == 10_000_000


def test_invalid_strategy_overrides_fall_back_to_defaults():
    defaults = StrategySettings()

    assert defaults.merged({"max_per_protocol": 500}) is defaults
    assert defaults.merged(None) is defaults
    assert defaults.merged({"min_tvl": None}) == defaults
