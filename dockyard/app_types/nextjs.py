"""Next.js frontend hooks."""
from pathlib import Path

from dockyard.app_types.base import AppTypeHooks
from dockyard.core.logger import get_logger

logger = get_logger(__name__)

NEXT_CONFIG_FILES = ("next.config.js", "next.config.mjs", "next.config.ts")


class NextjsHooks(AppTypeHooks):
    label = "Next.js Frontend"
    docker_template_dir = "nextjs"

    def create_env_file(self) -> Path:
        env_file = self.render_env_template("env/nextjs.env.j2")
        logger.warning(f"Edit {env_file} and update the API URLs and keys")
        return env_file

    def setup_requirements(self) -> None:
        repo_dir = self.app.paths.repo_dir
        configs = [repo_dir / name for name in NEXT_CONFIG_FILES if (repo_dir / name).exists()]
        if not configs:
            logger.warning("next.config.js not found, create it with output: 'standalone'")
        elif not any("standalone" in config.read_text() for config in configs):
            logger.warning(f"{configs[0].name} must set output: 'standalone' for the packaged Dockerfile")
        self.copy_docker_files()

    def build_image(self, tag: str) -> None:
        logger.info(f"Building Next.js image with tag {tag}")
        env_file = self.require_env_file()
        # NEXT_PUBLIC_* values are inlined at build time
        staged = {} if self.mock else {".env.production": env_file.read_text()}
        self.build_from_repo(tag, staged=staged)
        self.install_helper("nextjs/logs.sh.j2", "logs.sh")
