"""Configuration module for the Vintage Vision identification pipeline."""

from src.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
