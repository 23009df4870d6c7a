"""Configuration models and parser for taskpilot.yaml."""

from taskpilot.config.models import CliConfig, PilotConfig
from taskpilot.config.parser import ConfigError, load_config

__all__ = [
    "CliConfig",
    "ConfigError",
    "PilotConfig",
    "load_config",
]
