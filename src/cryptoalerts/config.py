from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cryptoalerts.errors import BadConfigError


def default_config_path() -> Path:
    from cryptoalerts.paths import default_config_path as _default_config_path

    return _default_config_path()


@dataclass(frozen=True)
class MonitorSettings:
    """Engine-facing knobs, detached from the pydantic config tree."""

    interval_seconds: float = 60.0
    noise_epsilon: float = 0.01
    daily_cooldown: timedelta = timedelta(hours=24)
    cleanup_interval_seconds: float = 3600.0
    price_cache_ttl_seconds: float = 3600.0


class MonitorConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between ticks")
    noise_epsilon: float = Field(default=0.01, ge=0.0, description="Minimum absolute move before re-evaluating")
    daily_cooldown_hours: float = Field(default=24.0, gt=0, description="Cooldown window for daily alerts")
    cleanup_interval_seconds: float = Field(default=3600.0, gt=0)
    price_cache_ttl_seconds: float = Field(default=3600.0, gt=0)

    def settings(self) -> MonitorSettings:
        return MonitorSettings(
            interval_seconds=self.interval_seconds,
            noise_epsilon=self.noise_epsilon,
            daily_cooldown=timedelta(hours=self.daily_cooldown_hours),
            cleanup_interval_seconds=self.cleanup_interval_seconds,
            price_cache_ttl_seconds=self.price_cache_ttl_seconds,
        )


class FeedConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    provider: Literal["binance", "file", "plugin"] = "binance"
    base_url: str = Field(default="https://api.binance.com")
    quote_asset: str = Field(default="USDT", description="Quote asset appended to symbols (BTC -> BTCUSDT)")
    prices_path: str | None = Field(default=None, description="JSON {symbol: price} file when provider='file'")
    plugin_name: str | None = Field(default=None, description="Feed key when provider='plugin'")
    timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("quote_asset")
    @classmethod
    def validate_quote_asset(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("quote_asset must be non-empty")
        return v


class NotifyConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    console: bool = Field(default=True, description="Print a banner and ring the terminal bell")
    inbox: bool = Field(default=True, description="Append to the local notification inbox")
    webhook_url: str | None = Field(default=None, description="Optional webhook URL for alert notifications")
    plugin_channels: list[str] = Field(default_factory=list, description="Channel keys registered by plugins")


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    plugins: list[str] = Field(default_factory=list, description="Plugin module names or .py file paths")
    store_path: str | None = Field(default=None, description="Override the alerts file location")


def config_path() -> Path:
    env = os.getenv("CRYPTOALERTS_CONFIG")
    return Path(env).expanduser() if env else default_config_path()


def load_config() -> AppConfig:
    """Read the config file, or defaults when there is none.

    A malformed or invalid file raises BadConfigError naming the file.
    """
    path = config_path()
    if not path.exists():
        return AppConfig()
    try:
        return AppConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise BadConfigError(f"{path}: {e}") from e


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(cfg.model_dump_json(indent=2) + "\n", encoding="utf-8")
    return path


def save_default_config(path: Path | None = None) -> Path:
    return save_config(AppConfig(), path)


def update_config_field(cfg: AppConfig, dotted_path: str, value: Any) -> AppConfig:
    """Return a copy with one field replaced, e.g. ``monitor.interval_seconds``.

    Unknown paths raise KeyError; values are re-validated by pydantic.
    """
    parts = [p for p in (dotted_path or "").strip().split(".") if p]
    if not parts:
        raise ValueError("field path must be non-empty")

    data = cfg.model_dump(mode="json")
    section = data
    for depth, key in enumerate(parts):
        if not isinstance(section, dict) or key not in section:
            where = ".".join(parts[:depth]) or "config"
            options = ", ".join(sorted(section)) if isinstance(section, dict) else "none"
            raise KeyError(f"unknown config path: {dotted_path} ({where} has: {options})")
        if depth < len(parts) - 1:
            section = section[key]
    section[parts[-1]] = value
    return AppConfig.model_validate(data)
