"""Per-app YAML configuration loader."""
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from dockyard.core.config import get_config
from dockyard.models.app import AppConfig
from dockyard.models.config import ConfigValidationError

CONFIG_FILENAME = "app.yml"


def _format_validation_error(path: Path, error: ValidationError) -> str:
    lines = [f"Invalid app config {path}:"]
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "(root)"
        lines.append(f"  {location}: {item['msg']}")
    return "\n".join(lines)


class AppConfigLoader:
    """Loads app configs from <DOCKYARD_HOME>/apps/<name>/app.yml."""

    def __init__(self, apps_dir: Optional[Path] = None):
        self.apps_dir = Path(apps_dir) if apps_dir else get_config().apps_config_dir

    def config_path(self, name: str) -> Path:
        return self.apps_dir / name / CONFIG_FILENAME

    def list_apps(self) -> List[str]:
        """Return configured app names.

        Directories starting with '_' (shared templates) and directories
        without an app.yml are skipped.
        """
        if not self.apps_dir.is_dir():
            return []

        names = []
        for entry in sorted(self.apps_dir.iterdir()):
            if not entry.is_dir() or entry.name.startswith("_"):
                continue
            if (entry / CONFIG_FILENAME).exists():
                names.append(entry.name)
        return names

    def load(self, name: str) -> AppConfig:
        """Load and validate a single app config.

        Raises:
            ConfigValidationError: If the file is missing, empty or invalid
        """
        path = self.config_path(name)
        if not path.exists():
            available = ", ".join(self.list_apps()) or "none"
            raise ConfigValidationError(
                f"App config not found: {path}\nConfigured apps: {available}"
            )

        with open(path) as f:
            try:
                raw = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Invalid YAML in {path}: {e}") from e

        if not raw:
            raise ConfigValidationError(f"App config is empty: {path}")
        if not isinstance(raw, dict):
            raise ConfigValidationError(f"App config must be a mapping: {path}")

        raw.setdefault("name", name)
        if raw["name"] != name:
            raise ConfigValidationError(
                f"App name '{raw['name']}' in {path} does not match directory '{name}'"
            )

        try:
            app = AppConfig(**raw)
        except ValidationError as e:
            raise ConfigValidationError(_format_validation_error(path, e)) from e

        app.config_dir = path.parent
        return app

    def load_all(self) -> List[AppConfig]:
        return [self.load(name) for name in self.list_apps()]
