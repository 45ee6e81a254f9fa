"""
Utilities Module
=================

Helper utilities for configuration, logging, and backtesting.
"""

from utils.config_loader import load_config, BotConfig, ConfigurationError
from utils.logging_utils import setup_logging, log_engine_event

__all__ = [
    "load_config",
    "BotConfig",
    "ConfigurationError",
    "setup_logging",
    "log_engine_event",
]
