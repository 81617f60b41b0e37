"""Packaged templates: nginx sites, Dockerfiles, env files and emails."""
import shutil
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from dockyard.core.logger import get_logger

logger = get_logger(__name__)


class TemplateLoader:
    """Renders {{PLACEHOLDER}} templates shipped in dockyard/templates/."""

    def __init__(self, templates_dir: Optional[Path] = None):
        """Initialize template loader.

        Args:
            templates_dir: Path to templates directory. Defaults to dockyard/templates/
        """
        if templates_dir is None:
            templates_dir = Path(__file__).parent.parent / "templates"
        self.templates_dir = Path(templates_dir)
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )

    def path(self, name: str) -> Path:
        """Filesystem path of a packaged template.

        Raises:
            FileNotFoundError: If the template doesn't exist
        """
        template_path = self.templates_dir / name
        if not template_path.exists():
            raise FileNotFoundError(f"Template '{name}' not found at {template_path}")
        return template_path

    def render(self, name: str, **context) -> str:
        """Render a packaged template by its path relative to the templates dir."""
        try:
            return self.jinja_env.get_template(name).render(**context)
        except TemplateError as e:
            logger.error(f"Failed to render template {name}: {e}")
            raise

    def render_string(self, source: str, **context) -> str:
        """Render template text supplied by an app's config directory."""
        try:
            return self.jinja_env.from_string(source).render(**context)
        except TemplateError as e:
            logger.error(f"Failed to render template: {e}")
            raise

    def copy(self, name: str, destination: Path) -> Path:
        """Copy a packaged file verbatim (Dockerfiles are not rendered)."""
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.path(name), destination)
        return destination
