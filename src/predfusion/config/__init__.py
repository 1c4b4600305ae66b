"""Configuration loading."""

from predfusion.config.settings import PlatformSettings, Settings, configure_logging, get_settings

__all__ = ["PlatformSettings", "Settings", "configure_logging", "get_settings"]
