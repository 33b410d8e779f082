"""YAML configuration for the move-stoploss runner."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import yaml

from .errors import ConfigError
from .stoploss import StopLossConfig

ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

DEFAULT_HOSTS = {
    "binance": "https://api.binance.com",
    "huobi": "https://api.huobi.pro",
}


def expand_env(text: str) -> str:
    """Replace ``${VAR}`` placeholders with environment values (missing -> "")."""

    def repl(m):
        return os.getenv(m.group(1), "")

    return ENV_PATTERN.sub(repl, text)


def load_config(path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            txt = f.read()
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    try:
        cfg = yaml.safe_load(expand_env(txt))
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if cfg is None:
        return {}
    if not isinstance(cfg, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return cfg


@dataclass(frozen=True)
class ExchangeConfig:
    name: str
    host: str
    api_key: str = field(repr=False, default="")
    secret_key: str = field(repr=False, default="")
    request_timeout: float = 10.0

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ExchangeConfig":
        name = str(raw.get("name", "binance") or "binance").lower()
        if name not in DEFAULT_HOSTS:
            raise ConfigError(f"unsupported exchange {name!r}, expected one of {sorted(DEFAULT_HOSTS)}")
        api_key = os.getenv("MOVESTOP_API_KEY") or str(raw.get("api_key", "") or "")
        secret_key = os.getenv("MOVESTOP_SECRET_KEY") or str(raw.get("secret_key", "") or "")
        try:
            timeout = float(raw.get("request_timeout", 10.0))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid request_timeout: {exc}") from exc
        if timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        return cls(
            name=name,
            host=str(raw.get("host") or DEFAULT_HOSTS[name]),
            api_key=api_key,
            secret_key=secret_key,
            request_timeout=timeout,
        )


@dataclass(frozen=True)
class TrackerConfig:
    quote: str
    stop: StopLossConfig
    ignore: Tuple[str, ...] = ()
    interval_seconds: float = 60.0
    max_workers: int = 4
    cancel_before_sell: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TrackerConfig":
        quote = str(raw.get("quote", "") or "").strip().lower()
        if not quote:
            raise ConfigError("quote asset is required")
        ignore = raw.get("ignore") or []
        if isinstance(ignore, str):
            ignore = [ignore]
        if not isinstance(ignore, (list, tuple)):
            raise ConfigError("ignore must be a list of coins")
        try:
            interval = float(raw.get("interval_seconds", 60.0))
            max_workers = int(raw.get("max_workers", 4))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid tracker setting: {exc}") from exc
        if interval <= 0:
            raise ConfigError("interval_seconds must be positive")
        if max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        return cls(
            quote=quote,
            stop=StopLossConfig.from_dict(raw),
            ignore=tuple(str(c).strip().lower() for c in ignore),
            interval_seconds=interval,
            max_workers=max_workers,
            cancel_before_sell=bool(raw.get("cancel_before_sell", False)),
        )


@dataclass(frozen=True)
class AppConfig:
    exchange: ExchangeConfig
    tracker: TrackerConfig

    @property
    def stoploss(self) -> StopLossConfig:
        return self.tracker.stop

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AppConfig":
        exchange = raw.get("exchange") or {}
        if isinstance(exchange, str):
            exchange = {"name": exchange}
        if not isinstance(exchange, dict):
            raise ConfigError("exchange must be a mapping")
        return cls(exchange=ExchangeConfig.from_dict(exchange), tracker=TrackerConfig.from_dict(raw))


def load_app_config(path) -> AppConfig:
    return AppConfig.from_dict(load_config(path))
