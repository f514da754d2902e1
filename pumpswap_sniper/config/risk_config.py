"""
Risk Configuration Manager

Entry filters, position limits and exit rules, read from a YAML or JSON file.
A default file is written when none exists.
"""

import json
import yaml
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict
from pathlib import Path

from pumpswap_sniper.constants import LAMPORTS_PER_SOL
from pumpswap_sniper.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class EntryFilters:
    """Risk gate thresholds applied to every candidate pool"""
    min_liquidity_usd: float = 300.0
    min_recent_buyers: int = 0
    min_age_ms: int = 150
    max_age_ms: int = 5000
    required_decimals: int = 9


@dataclass
class PositionLimits:
    """Capital ceilings"""
    max_trade_lamports: int = LAMPORTS_PER_SOL // 5  # 0.2 SOL
    max_open_positions: int = 5


@dataclass
class ExitRules:
    """Exit thresholds used by the lifecycle manager"""
    exit_retry_cooldown_sec: float = 2.0
    momentum_exit_enabled: bool = True
    momentum_window_sec: float = 10.0
    momentum_min_buyers: int = 5


@dataclass
class RiskConfig:
    """Complete risk configuration"""
    version: str = "1.0"

    entry_filters: EntryFilters = field(default_factory=EntryFilters)
    position_limits: PositionLimits = field(default_factory=PositionLimits)
    exit_rules: ExitRules = field(default_factory=ExitRules)

    trading_enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskConfig":
        try:
            return cls(
                version=str(data.get("version", "1.0")),
                entry_filters=EntryFilters(**(data.get("entry_filters") or {})),
                position_limits=PositionLimits(**(data.get("position_limits") or {})),
                exit_rules=ExitRules(**(data.get("exit_rules") or {})),
                trading_enabled=bool(data.get("trading_enabled", True)),
            )
        except TypeError as e:
            raise ConfigurationError("Unknown key in risk config", error=str(e)) from e


def _is_yaml(path: Path) -> bool:
    return path.suffix in (".yaml", ".yml")


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
        data = yaml.safe_load(text) if _is_yaml(path) else json.loads(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError("Cannot read risk config", path=str(path), error=str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Risk config must be a mapping", path=str(path))
    return data


def _write_file(path: Path, data: Dict[str, Any]):
    path.parent.mkdir(parents=True, exist_ok=True)
    if _is_yaml(path):
        text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    else:
        text = json.dumps(data, indent=2)
    path.write_text(text, encoding="utf-8")


class RiskConfigManager:
    """
    Owns the risk config file. A missing file is created with defaults.

    Usage:
        manager = RiskConfigManager("config/risk_config.yaml")
        for problem in manager.validate():
            ...
        limit = manager.get_config().position_limits.max_open_positions
    """

    DEFAULT_CONFIG_PATH = "config/risk_config.yaml"

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH)
        if self.config_path.exists():
            self._config = RiskConfig.from_dict(_read_file(self.config_path))
            logger.info("Risk config loaded from %s", self.config_path)
        else:
            self._config = RiskConfig()
            self.save_config()
            logger.info("Wrote default risk config to %s", self.config_path)

    def get_config(self) -> RiskConfig:
        return self._config

    def save_config(self, config: Optional[RiskConfig] = None):
        if config is not None:
            self._config = config
        _write_file(self.config_path, self._config.to_dict())

    def reload(self) -> bool:
        """Re-read the file; False when it has disappeared."""
        if not self.config_path.exists():
            return False
        self._config = RiskConfig.from_dict(_read_file(self.config_path))
        logger.info("Risk config reloaded from %s", self.config_path)
        return True

    def validate(self) -> List[str]:
        """Human-readable problems with the current values; empty when usable."""
        config = self._config
        filters, limits, rules = config.entry_filters, config.position_limits, config.exit_rules
        checks = [
            (filters.min_liquidity_usd >= 0, "min_liquidity_usd must be >= 0"),
            (filters.min_recent_buyers >= 0, "min_recent_buyers must be >= 0"),
            (0 <= filters.min_age_ms < filters.max_age_ms,
             "age window must satisfy 0 <= min_age_ms < max_age_ms"),
            (limits.max_trade_lamports > 0, "max_trade_lamports must be > 0"),
            (limits.max_open_positions > 0, "max_open_positions must be > 0"),
            (rules.exit_retry_cooldown_sec >= 0, "exit_retry_cooldown_sec must be >= 0"),
            (rules.momentum_window_sec > 0, "momentum_window_sec must be > 0"),
        ]
        return [message for ok, message in checks if not ok]
