"""Runtime settings loaded from the environment (.env supported)."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields

from dotenv import load_dotenv

from pumpswap_sniper.constants import (
    DEFAULT_COMPUTE_UNIT_LIMIT,
    DEFAULT_COMPUTE_UNIT_PRICE,
    DEFAULT_SLIPPAGE_BPS,
)
from pumpswap_sniper.exceptions import ConfigurationError


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError("Environment variable is not an integer", name=name, value=raw) from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError("Environment variable is not a number", name=name, value=raw) from e


@dataclass
class Settings:
    # ============================================
    # CREDENTIALS & ENDPOINTS
    # ============================================
    RPC_URL: str = "https://api.mainnet-beta.solana.com"
    WSS_URL: str = ""
    PRICE_FEED_URL: str = "wss://pumpswap.io/api/ws"
    TRADER_PRIVATE_KEY: str = ""
    API_TIMEOUT_SEC: float = 10.0

    # Telegram
    TELEGRAM_ENABLED: bool = False
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""

    # Decision service (OpenAI-compatible chat completions)
    DECISION_BASE_URL: str = "https://api.openai.com/v1"
    DECISION_API_KEY: str = ""
    DECISION_MODEL: str = "gpt-4.1-mini"
    DECISION_TIMEOUT_SEC: float = 15.0

    # ============================================
    # EXECUTION
    # ============================================
    SLIPPAGE_BPS: int = DEFAULT_SLIPPAGE_BPS
    SKIP_PREFLIGHT: bool = True
    PRIORITY_FEE_ENABLED: bool = True
    COMPUTE_UNIT_PRICE: int = DEFAULT_COMPUTE_UNIT_PRICE
    COMPUTE_UNIT_LIMIT: int = DEFAULT_COMPUTE_UNIT_LIMIT
    AUTO_WRAP_SOL: bool = False
    SUBMIT_MAX_ATTEMPTS: int = 3
    CONFIRM_TIMEOUT_SEC: float = 60.0
    VERIFY_COMMITMENT: str = "confirmed"
    VERIFY_FETCH_ATTEMPTS: int = 5
    POOL_FETCH_ATTEMPTS: int = 10
    POOL_FETCH_DELAY_SEC: float = 0.35

    # ============================================
    # PRICE FEED
    # ============================================
    PRICE_FEED_MAX_RECONNECTS: int = 10
    PRICE_FEED_RECONNECT_DELAY_SEC: float = 5.0
    PRICE_FEED_PING_SEC: float = 30.0
    PRICE_FEED_INTERVAL_MS: int = 200

    # ============================================
    # MOMENTUM POLL (adaptive interval)
    # ============================================
    MOMENTUM_BASE_INTERVAL_SEC: float = 1.5
    MOMENTUM_FAST_INTERVAL_SEC: float = 0.5
    MOMENTUM_SLOW_INTERVAL_SEC: float = 2.0
    MOMENTUM_VOLATILITY_PCT: float = 1.0
    MOMENTUM_CALM_SEC: float = 5.0

    # SOL/USD reference for liquidity estimates
    SOL_PRICE_URL: str = "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"
    SOL_PRICE_CACHE_SEC: float = 5.0

    # ============================================
    # FILES & LOGGING
    # ============================================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    POSITIONS_PATH: str = "data/positions.json"
    RISK_CONFIG_PATH: str = "config/risk_config.yaml"
    DENY_LIST_PATH: str = "config/blacklist.json"

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "Settings":
        """Build settings from the process environment after loading .env."""
        load_dotenv(dotenv_path)
        values = {}
        for f in fields(cls):
            default = f.default
            if isinstance(default, bool):
                values[f.name] = _env_bool(f.name, default)
            elif isinstance(default, int):
                values[f.name] = _env_int(f.name, default)
            elif isinstance(default, float):
                values[f.name] = _env_float(f.name, default)
            else:
                values[f.name] = _env_str(f.name, default)
        settings = cls(**values)
        if not settings.WSS_URL and settings.RPC_URL:
            settings.WSS_URL = settings.RPC_URL.replace("https", "wss", 1)
        return settings

    def validate(self) -> None:
        """Raise ConfigurationError on values the engine cannot run with."""
        if not self.RPC_URL:
            raise ConfigurationError("RPC_URL is required")
        if not self.TRADER_PRIVATE_KEY:
            raise ConfigurationError("TRADER_PRIVATE_KEY is required")
        if not 0 <= self.SLIPPAGE_BPS <= 0xFFFF:
            raise ConfigurationError("SLIPPAGE_BPS out of range", value=self.SLIPPAGE_BPS)
        if self.SUBMIT_MAX_ATTEMPTS < 1:
            raise ConfigurationError("SUBMIT_MAX_ATTEMPTS must be >= 1", value=self.SUBMIT_MAX_ATTEMPTS)
        if self.PRICE_FEED_MAX_RECONNECTS < 0:
            raise ConfigurationError("PRICE_FEED_MAX_RECONNECTS must be >= 0")
        if self.VERIFY_COMMITMENT not in ("confirmed", "finalized"):
            raise ConfigurationError("VERIFY_COMMITMENT must be confirmed or finalized",
                                     value=self.VERIFY_COMMITMENT)
        if self.TELEGRAM_ENABLED and not (self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID):
            raise ConfigurationError("TELEGRAM_ENABLED requires TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")
