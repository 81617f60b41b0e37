"""Configuration error types."""


class ConfigValidationError(Exception):
    """Raised when an app configuration is missing or invalid."""
    pass
