"""Configuration management."""
from dockyard.config.loader import AppConfigLoader
from dockyard.models.config import ConfigValidationError

__all__ = ['AppConfigLoader', 'ConfigValidationError']
