"""Configuration package."""

from geo_pipeline.config.settings import RetryPolicy, Settings, get_settings

__all__ = ["RetryPolicy", "Settings", "get_settings"]
