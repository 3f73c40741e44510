"""Configuration models for the marketplace."""

from .config import PlatformPolicy, Settings, get_platform_policy, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "PlatformPolicy",
    "get_platform_policy",
]
