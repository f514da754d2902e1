"""Config package"""
from .settings import Settings
from .risk_config import (
    RiskConfig,
    RiskConfigManager,
    EntryFilters,
    PositionLimits,
    ExitRules,
)

__all__ = [
    "Settings",
    "RiskConfig",
    "RiskConfigManager",
    "EntryFilters",
    "PositionLimits",
    "ExitRules",
]
