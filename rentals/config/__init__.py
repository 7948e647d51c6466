"""Configuration package for the rental booking service."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
