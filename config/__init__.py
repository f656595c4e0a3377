"""
Configuration module for the staged execution system.

Public API:
    - Settings: Main configuration class
    - load_settings: Factory function to load settings from environment
    - EXECUTION_MODES, EXECUTION_STATUS, DECISION_ACTIONS, DIRECTIONS,
      ERROR_TYPES, AUDIT_EVENTS: string enumerations
"""

from config.constants import (
    AUDIT_EVENTS,
    DECISION_ACTIONS,
    DEFAULT_SEED,
    DIRECTIONS,
    ERROR_TYPES,
    EXECUTION_MODES,
    EXECUTION_STATUS,
)
from config.settings import (
    BacktestConfig,
    ExecutionConfig,
    RiskLimitsConfig,
    Settings,
    SizingConfig,
    StorageConfig,
    load_settings,
)

__all__ = [
    "Settings",
    "load_settings",
    "SizingConfig",
    "RiskLimitsConfig",
    "ExecutionConfig",
    "BacktestConfig",
    "StorageConfig",
    "EXECUTION_MODES",
    "EXECUTION_STATUS",
    "DECISION_ACTIONS",
    "DIRECTIONS",
    "ERROR_TYPES",
    "AUDIT_EVENTS",
    "DEFAULT_SEED",
]
