"""
Configuration management for cloud storage sync.
"""

from .environment import EnvironmentLoader
from .settings import CloudSyncSettings, LogLevel
from .validation import ConfigValidator

__all__ = [
    "EnvironmentLoader",
    "CloudSyncSettings",
    "LogLevel",
    "ConfigValidator",
]
