"""
Configuration for apiharvest.

Usage:
    from apiharvest.config import get_settings, configure_logging

    settings = get_settings()
    configure_logging(settings)
"""

from .settings import HarvestSettings, configure_logging, get_settings, reset_settings

__all__ = [
    "HarvestSettings",
    "configure_logging",
    "get_settings",
    "reset_settings",
]
