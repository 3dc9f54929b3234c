"""
Configuration Management Module
Typed settings for budget, scheduling, workers, extraction and providers.
"""
from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
