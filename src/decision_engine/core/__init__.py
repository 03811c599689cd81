"""Core engine components."""

from .config import ConfigLoader, EngineConfig, RuleDefinition, RuleSetDefinition
from .logging import configure_logging
from .errors import (
    EngineError,
    ConfigError,
    RuleError,
)

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "RuleDefinition",
    "RuleSetDefinition",
    "configure_logging",
    "EngineError",
    "ConfigError",
    "RuleError",
]
