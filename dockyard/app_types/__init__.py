"""Application types and the hooks they plug into setup and deploy.

- rails: Rails API with postgres, redis, sidekiq workers and clockwork
- nextjs: Next.js frontend built with standalone output
- cron-job: single scheduled-job container built from several repos
"""
from typing import Dict, Optional, Type, Union

from dockyard.app_types.base import AppTypeHooks, HookContext
from dockyard.app_types.cron_job import CronJobHooks
from dockyard.app_types.nextjs import NextjsHooks
from dockyard.app_types.rails import RailsHooks
from dockyard.models.app import AppConfig, AppType
from dockyard.models.config import ConfigValidationError

APP_TYPES: Dict[AppType, Type[AppTypeHooks]] = {
    AppType.RAILS: RailsHooks,
    AppType.NEXTJS: NextjsHooks,
    AppType.CRON_JOB: CronJobHooks,
}


def resolve_app_type(value: Union[str, AppType]) -> Type[AppTypeHooks]:
    """Hooks class for a type name.

    Raises:
        ConfigValidationError: If the type is not supported
    """
    try:
        return APP_TYPES[AppType(value)]
    except (ValueError, KeyError):
        supported = ", ".join(t.value for t in APP_TYPES)
        raise ConfigValidationError(f"Unknown app type '{value}'. Supported types: {supported}")


def get_app_type(app: AppConfig, context: Optional[HookContext] = None, mock: bool = False) -> AppTypeHooks:
    hooks_class = resolve_app_type(app.type)
    return hooks_class(app, context or HookContext.for_app(app, mock=mock))


__all__ = [
    'APP_TYPES',
    'AppTypeHooks',
    'CronJobHooks',
    'HookContext',
    'NextjsHooks',
    'RailsHooks',
    'get_app_type',
    'resolve_app_type',
]
