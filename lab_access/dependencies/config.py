"""
Configuration dependencies for route handlers.
"""

from fastapi import Depends

from lab_access.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """Settings for the running process; overridden in tests."""
    return get_settings()


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings"]
