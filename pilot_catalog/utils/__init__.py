"""Configuration utilities."""

from .config import AppConfig, DEFAULT_LOCALES, load_config

__all__ = ["AppConfig", "DEFAULT_LOCALES", "load_config"]
