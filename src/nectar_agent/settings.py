"""Settings module with unified configuration precedence: CLI > ENV > CONFIG FILE."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

import tomllib

from dotenv import load_dotenv
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .constants import DEFAULT_BSC_RPC_URLS, PROTOCOL_TRUST
from .logger import get_logger

load_dotenv()

logger = get_logger(__name__)

SECRET_FIELDS = ("private_key", "decision_api_key")


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Strategy(str, Enum):
    AI = "ai"
    RULES = "rules"


class StrategySettings(BaseModel):
    """Per-user strategy knobs. Users may override any subset of these."""

    risk_level: RiskLevel = RiskLevel.MEDIUM
    min_tvl: float = Field(default=10_000_000, ge=0)
    apy_threshold: float = Field(default=2.0, ge=0)
    max_per_protocol: float = Field(default=50, gt=0, le=100)
    rebalance_cooldown_hours: float = Field(default=6, ge=0)
    whitelisted_protocols: list[str] = Field(
        default_factory=lambda: ["venus", "aave", "lista"]
    )
    whitelisted_assets: list[str] = Field(
        default_factory=lambda: ["USDT", "USDC", "BTCB", "WETH", "WBNB", "USD1"]
    )
    protocol_trust: dict[str, float] = Field(
        default_factory=lambda: dict(PROTOCOL_TRUST)
    )

    model_config = ConfigDict(extra="ignore")

    @field_validator("whitelisted_protocols", mode="after")
    @classmethod
    def normalize_protocols(cls, v: list[str]) -> list[str]:
        return [p.strip().lower() for p in v if p.strip()]

    def merged(self, overrides: dict[str, Any] | None) -> StrategySettings:
        """Return a copy with ``overrides`` applied.

        Invalid overrides are logged and ignored so a bad stored row never
        blocks a cycle.
        """
        if not overrides:
            return self
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return StrategySettings.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid strategy overrides %s: %s", overrides, e)
            return self


class AgentSettings(BaseSettings):
    """Single source of truth for configuration. Values may come from:
    - CLI (init kwargs)
    - ENV / .env (prefixed with NECTAR_AGENT_)
    - Config file (TOML), lowest precedence

    Do not read os.environ or files elsewhere in the codebase.
    """

    # --- global toggles ---
    dry_run: bool = True
    strategy: Strategy = Strategy.AI
    user_id: str | None = None

    # --- chain access ---
    rpc_urls: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_BSC_RPC_URLS)
    )
    rpc_timeout: float = 15.0
    max_calls: int = 5
    rpc_delay: float = 0.05
    rpc_jitter: float = 0.05

    # --- signing ---
    private_key: SecretStr | None = None
    wallet_address: str | None = None
    # None waits for a receipt indefinitely
    tx_receipt_timeout: float | None = None

    # --- decision provider ---
    decision_api_url: str = "https://api.openai.com/v1/chat/completions"
    decision_api_key: SecretStr | None = None
    decision_model: str = "gpt-4o-mini"
    decision_temperature: float = Field(default=0.2, ge=0, le=2)
    decision_max_tokens: int = Field(default=1500, gt=0)
    decision_timeout: float = 60.0

    # --- market data ---
    http_timeout: float = 10.0

    # --- strategy defaults (per-user overrides are merged on top) ---
    strategy_defaults: StrategySettings = Field(default_factory=StrategySettings)

    # --- execution ---
    dust_floor_usd: float = Field(default=1.0, ge=0)
    gas_reserve_wei: int = Field(default=5 * 10**15, ge=0)
    min_position_balance: float = Field(default=0.01, ge=0)
    swap_slippage_bps: int = Field(default=100, ge=0, lt=10_000)
    gas_units_estimate_bnb: float = Field(default=0.0005, ge=0)
    fallback_bnb_price_usd: float = Field(default=600.0, gt=0)

    # --- context / observability ---
    top_opportunities: int = Field(default=15, gt=0)
    trend_lookback_hours: float = Field(default=24, gt=0)
    recent_decisions_limit: int = Field(default=8, ge=0)
    activity_buffer_size: int = Field(default=200, gt=0)

    # --- scheduling ---
    rebalance_interval_minutes: float = Field(default=30, gt=0)
    snapshot_interval_minutes: float = Field(default=60, gt=0)

    # --- logging ---
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="NECTAR_AGENT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator(*SECRET_FIELDS, mode="before")
    @classmethod
    def wrap_secrets(cls, v: Any) -> SecretStr | None:
        """Wrap string secrets in SecretStr."""
        if v is None or isinstance(v, SecretStr):
            return v
        return SecretStr(v)

    @field_validator("rpc_urls", mode="before")
    @classmethod
    def split_rpc_urls(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [u.strip() for u in v.split(",") if u.strip()]
        return v

    @model_validator(mode="after")
    def validate_rpc_urls(self) -> "AgentSettings":
        if not self.rpc_urls:
            raise ValueError("rpc_urls must contain at least one endpoint")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Custom config-file source with explicit precedence: CLI > ENV > FILE."""
        env_cfg = os.environ.get("NECTAR_AGENT_CONFIG")
        cfg_path = Path(env_cfg) if env_cfg else None

        class TomlConfigSource(PydanticBaseSettingsSource):
            def __init__(self, settings_cls: type[BaseSettings], path: Path | None):
                super().__init__(settings_cls)
                self._path = path

            def get_field_value(
                self, field: Any, field_name: str
            ) -> tuple[Any, str, bool]:
                return None, "", False

            def __call__(self) -> dict[str, Any]:
                if not self._path:
                    local_config = Path("nectar-agent.toml")
                    user_config = (
                        Path.home() / ".config" / "nectar-agent" / "config.toml"
                    )
                    if local_config.exists():
                        self._path = local_config
                    elif user_config.exists():
                        self._path = user_config
                    else:
                        return {}

                if not self._path.exists():
                    return {}

                with self._path.open("rb") as f:
                    data = tomllib.load(f)  # supports top-level or [nectar_agent]
                body = data.get("nectar_agent", data)
                if not isinstance(body, dict):
                    return {}

                for key in SECRET_FIELDS:
                    if key in body:
                        raise ValueError(
                            f"Security violation: '{key}' found in TOML config file. "
                            f"Secrets must only be provided via environment variables or CLI flags."
                        )

                return body

        return (
            init_settings,  # CLI (highest)
            env_settings,  # ENV
            dotenv_settings,  # .env
            TomlConfigSource(settings_cls, cfg_path),  # CONFIG (lowest)
            file_secret_settings,
        )

    def as_safe_dict(self) -> dict[str, Any]:
        """Return the config as a dict with secrets redacted."""
        data = self.model_dump(mode="json")
        for key in SECRET_FIELDS:
            if getattr(self, key):
                data[key] = "***redacted***"
        return data

    @property
    def private_key_required(self) -> str:
        """Get the signing key, raising ValueError if not set."""
        if self.private_key is None:
            raise ValueError("private_key must be configured")
        return self.private_key.get_secret_value()

    @property
    def decision_api_key_required(self) -> str:
        """Get the decision provider API key, raising ValueError if not set."""
        if self.decision_api_key is None:
            raise ValueError("decision_api_key must be configured")
        return self.decision_api_key.get_secret_value()
