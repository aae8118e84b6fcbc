"""
Configuration module for the drift engine.

This module provides configuration management and logging setup.
"""

from .settings import (
    Settings,
    FamilyPattern,
    DEFAULT_FAMILY_PATTERNS,
    get_settings,
    load_yaml_config,
)

from .logging_config import (
    configure_logging,
    setup_logging,
    RequestContextFilter,
    set_request_context,
)

__all__ = [
    "Settings",
    "FamilyPattern",
    "DEFAULT_FAMILY_PATTERNS",
    "get_settings",
    "load_yaml_config",
    "configure_logging",
    "setup_logging",
    "RequestContextFilter",
    "set_request_context",
]
