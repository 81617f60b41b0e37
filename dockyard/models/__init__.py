"""Data models for dockyard."""
from dockyard.models.app import AppConfig, AppType
from dockyard.models.config import ConfigValidationError
from dockyard.models.container import ContainerInfo, ImageBackup, format_uptime
from dockyard.models.deployment import DeploymentResult

__all__ = [
    'AppConfig',
    'AppType',
    'ConfigValidationError',
    'ContainerInfo',
    'DeploymentResult',
    'ImageBackup',
    'format_uptime',
]
