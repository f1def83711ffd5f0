"""
Configuration for Puffin.
"""

from .settings import GoogleSettings, LogLevel, PuffinConfig, ServerSettings, SyncSettings
from .environment import EnvironmentLoader

__all__ = [
    "GoogleSettings",
    "LogLevel",
    "PuffinConfig",
    "ServerSettings",
    "SyncSettings",
    "EnvironmentLoader",
]
