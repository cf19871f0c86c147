"""
Core module - Engineering foundation

Contains configuration, logging, errors, caching, and time utilities.
"""

from codewarden.core.config import Settings, get_settings, load_yaml_config
from codewarden.core.errors import (
    CodewardenError,
    ConfigurationError,
    InvalidFeatureError,
    StoreUnavailableError,
)
from codewarden.core.logging import setup_logging, get_logger

__all__ = [
    "Settings",
    "get_settings",
    "load_yaml_config",
    "CodewardenError",
    "ConfigurationError",
    "InvalidFeatureError",
    "StoreUnavailableError",
    "setup_logging",
    "get_logger",
]
