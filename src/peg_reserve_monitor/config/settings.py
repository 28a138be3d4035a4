"""Configuration management for the peg reserve monitor."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "MONITOR_PROFILE"
DEFAULT_PROFILE = "default"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
    """Merge the ``[default]`` table with the requested profile table."""

    base_section = cast(Dict[str, Any], data.get(DEFAULT_PROFILE, {}))
    requested = os.getenv(PROFILE_ENV_VAR)
    if not requested:
        mode_section = base_section.get("mode")
        if isinstance(mode_section, dict):
            requested = cast(Optional[str], mode_section.get("profile"))
    profile = (requested or DEFAULT_PROFILE).lower()
    if profile != DEFAULT_PROFILE and isinstance(data.get(profile), dict):
        return _deep_merge(base_section, cast(Dict[str, Any], data[profile])), profile
    if base_section:
        return dict(base_section), profile
    return dict(data), profile


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged, profile = _select_profile(payload)
    mode_section = merged.get("mode")
    mode_section = dict(mode_section) if isinstance(mode_section, dict) else {}
    mode_section["profile"] = profile
    mode_section.setdefault("config_file", str(path))
    merged["mode"] = mode_section
    return merged, path


class ModeConfig(BaseModel):
    """Active configuration profile."""

    profile: str = Field(default=DEFAULT_PROFILE)
    config_file: Optional[Path] = None


class DataSourceConfig(BaseModel):
    """HTTP and RPC endpoints used by the venue readers."""

    coingecko_base_url: AnyHttpUrl = Field(default="https://api.coingecko.com/api/v3")
    coingecko_asset_id: str = Field(default="gho")
    coingecko_api_key: Optional[str] = None
    ethereum_rpc_url: AnyHttpUrl = Field(default="https://eth.public-rpc.com")
    http_timeout: float = Field(default=10.0, ge=1.0, le=45.0)
    cache_ttl_seconds: int = Field(default=30, ge=0)


class CurvePoolConfig(BaseModel):
    """A Curve stableswap pool quoting the monitored asset."""

    address: str
    name: str
    asset_index: int = Field(default=0, ge=0)
    stable_index: int = Field(default=1, ge=0)
    enabled: bool = True


class FluidPoolConfig(BaseModel):
    """Fluid DEX pool quoted through the reserves resolver."""

    pool: str = Field(default="0xdE632C3a214D5f14C1d8ddF0b92F8BCd188fee45")
    token: str = Field(default="0x40d16fc0246ad3160ccc09b8d0d3a2cd28ae6c2f")
    reserves_resolver: str = Field(default="0xC93876C0EEd99645DD53937b25433e311881A27C")
    amount_in: int = Field(default=10**18, gt=0)
    amount_out_decimals: int = Field(default=6, ge=0, le=36)
    enabled: bool = True


class VenueConfig(BaseModel):
    """Venue toggles and on-chain pool coordinates."""

    enable_coingecko: bool = True
    curve_gho_crvusd: CurvePoolConfig = Field(
        default_factory=lambda: CurvePoolConfig(
            address="0x635EF0056A597D13863B73825CcA297236578595",
            name="GHO/crvUSD",
            asset_index=0,
            stable_index=1,
        )
    )
    curve_gho_usde: CurvePoolConfig = Field(
        default_factory=lambda: CurvePoolConfig(
            address="0x670a72e6d22b0956c0d2573288f82dcc5d6e3a61",
            name="GHO/USDe",
            asset_index=1,
            stable_index=0,
        )
    )
    fluid: FluidPoolConfig = Field(default_factory=FluidPoolConfig)


class SamplingConfig(BaseModel):
    """Polling cadence and window sizing."""

    live_poll_interval_seconds: float = Field(default=60.0, gt=0.0)
    history_poll_interval_seconds: float = Field(default=300.0, gt=0.0)
    read_timeout_seconds: float = Field(default=10.0, gt=0.0)
    window_horizon_hours: float = Field(default=24.0, gt=0.0)
    history_days: int = Field(default=30, ge=1, le=365)


class ReserveDefaultsConfig(BaseModel):
    """Starting reserve parameters for the capacity model."""

    tvl: float = Field(default=250_000.0, ge=0.0)
    usdc_weight_pct: float = Field(default=80.0, ge=0.0, le=100.0)
    cycles_per_day: float = Field(default=12.0, ge=0.0, le=1_000.0)
    efficiency_pct: float = Field(default=90.0, ge=0.0, le=100.0)
    actual_daily_volume: float = Field(default=0.0, ge=0.0)


class EconomicsDefaultsConfig(BaseModel):
    """Fee split between solver and protocol."""

    solver_share_of_protocol_fees_pct: float = Field(default=50.0, ge=0.0, le=100.0)


class SimulationConfig(BaseModel):
    """Resolution of the capacity simulator and the TVL grid search."""

    step_hours: float = Field(default=0.25, gt=0.0, le=24.0)
    horizon_hours: float = Field(default=24.0, gt=0.0)
    tvl_search_step: float = Field(default=1_000.0, gt=0.0)
    tvl_search_max: float = Field(default=100_000_000.0, gt=0.0)


class MonitoringConfig(BaseModel):
    """Logging and alerting configuration."""

    log_level: str = Field(default="INFO")
    webhook_urls: List[AnyHttpUrl] = Field(default_factory=list)
    slack_webhook_url: Optional[AnyHttpUrl] = None
    alert_throttle_seconds: int = Field(default=300, ge=0)
    event_history_size: int = Field(default=500, ge=1)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class DashboardConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    mode: ModeConfig = Field(default_factory=ModeConfig)
    data_sources: DataSourceConfig = Field(default_factory=DataSourceConfig)
    venues: VenueConfig = Field(default_factory=VenueConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    reserve: ReserveDefaultsConfig = Field(default_factory=ReserveDefaultsConfig)
    economics: EconomicsDefaultsConfig = Field(default_factory=EconomicsDefaultsConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, _ = _load_toml_config()
            return payload

        # Runtime environment variables win over the static config file.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "CurvePoolConfig",
    "DashboardConfig",
    "DataSourceConfig",
    "EconomicsDefaultsConfig",
    "FluidPoolConfig",
    "ModeConfig",
    "MonitoringConfig",
    "ReserveDefaultsConfig",
    "SamplingConfig",
    "SimulationConfig",
    "VenueConfig",
    "get_app_config",
]
