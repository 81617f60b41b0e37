"""Rails API hooks: postgres, migrations, sidekiq workers and clockwork."""
import os
import re
import subprocess
from pathlib import Path
from typing import List, Optional

from dockyard.app_types.base import AppTypeHooks, PortsCallback
from dockyard.config.env_file import (
    BUILD_TIME_ENV,
    generate_secret_key,
    get_or_generate_secret,
    read_env_file,
    render_env,
)
from dockyard.core.errors import CommandError, DeployError, SetupError
from dockyard.core.logger import get_logger
from dockyard.models.deployment import DeploymentResult

logger = get_logger(__name__)

# Seconds for the migration check container to boot
MIGRATION_CHECK_SETTLE = 5
PENDING_MIGRATION = re.compile(r"^\s*down\b", re.M)


class RailsHooks(AppTypeHooks):
    label = "Rails API"
    docker_template_dir = "rails"

    # Setup

    def check_prerequisites(self) -> None:
        logger.info("Checking Rails prerequisites...")
        problems = self.db.check_prerequisites()
        if problems:
            raise SetupError("Missing prerequisites:\n  " + "\n  ".join(problems))
        logger.info("✓ All Rails prerequisites are installed")

    def db_password(self) -> str:
        """DB_PASSWORD from the env file, generated on first setup."""
        if not hasattr(self, "_db_password"):
            self._db_password = get_or_generate_secret(self.app.paths.env_file, "DB_PASSWORD")
        return self._db_password

    def setup_database(self) -> None:
        database, user = self.app.database.name, self.app.database.user
        logger.info(f"Setting up database {database} for user {user}")
        if not self.db.ensure_database(database, user, self.db_password()):
            raise SetupError(f"Database setup failed for {database}")
        logger.info(f"✓ Database configured: {database}")
        logger.info(f"Database password stored in {self.app.paths.env_file}")

    def create_env_file(self) -> Path:
        env_file = self.app.paths.env_file
        secret = get_or_generate_secret(env_file, "SECRET_KEY_BASE", generate_secret_key)
        password = self.db_password()

        self.render_env_template(
            "env/rails.env.j2",
            database_url=self.app.database_url(password),
            db_password=password,
            secret_key_base=secret,
        )

        if not self.mock and not read_env_file(env_file).get("SECRET_KEY_BASE"):
            raise SetupError(f"Failed to write SECRET_KEY_BASE to {env_file}")
        logger.warning(f"Edit {env_file} and replace the values marked dummy_ or example.com")
        return env_file

    def setup_requirements(self) -> None:
        self.copy_docker_files()
        if self.mock:
            return

        repo_dir = self.app.paths.repo_dir
        log_dir = repo_dir / "log"
        if not log_dir.exists():
            log_dir.mkdir(parents=True)
            # Written by the container's unprivileged user
            log_dir.chmod(0o777)
            logger.info(f"Created log directory: {log_dir}")

        link = repo_dir / ".env.production"
        if not link.is_symlink():
            link.unlink(missing_ok=True)
            os.symlink(self.app.paths.env_file, link)
            logger.info(f"Created symlink: {link} -> {self.app.paths.env_file}")

    # Migrations

    def _rails(self, container: str, args: str) -> subprocess.CompletedProcess:
        workdir = self.app.containers.workdir
        return self.docker.exec(container, ["/bin/bash", "-c", f"cd {workdir} && bundle exec rails {args}"])

    def has_pending_migrations(self, container: str) -> bool:
        logger.info("Checking for pending migrations...")
        result = self._rails(container, "db:migrate:status")
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            # e.g. the schema_migrations table does not exist yet
            logger.warning(f"db:migrate:status failed, assuming migrations are pending: {output.strip()}")
            return True
        if PENDING_MIGRATION.search(output):
            logger.warning("Pending migrations detected")
            return True
        logger.info("No pending migrations")
        return False

    def run_migrations(self, container: str) -> None:
        logger.info(f"Running database migrations in {container}...")
        result = self._rails(container, "db:migrate")
        if result.returncode != 0:
            raise CommandError(result.args, result.returncode, result.stderr or result.stdout)
        logger.info("✓ Migrations completed successfully")

    def _backup_database(self) -> None:
        if self.db.backup(self.app.database.name, self.app.paths.backup_dir) is None:
            raise DeployError("Database backup failed, not running migrations")

    def _migrate_in_check_container(self, tag: str) -> None:
        """Run pending migrations from a throwaway container of the new image."""
        check = self.app.migration_check_container_name()
        self.docker.remove_container(check, force=True)
        started = self.docker.run_container(
            check,
            self.app.image_ref(tag),
            env_file=self.app.paths.env_file,
            network="host",
            command=["sleep", "infinity"],
            restart="no",
        )
        if not started:
            raise DeployError(f"Failed to start {check}")

        try:
            self.containers.sleep(MIGRATION_CHECK_SETTLE)
            if self.has_pending_migrations(check):
                self._backup_database()
                self.run_migrations(check)
                self.migrations_run = True
        finally:
            self.docker.remove_container(check, force=True)

    # Deploy

    def build_image(self, tag: str) -> None:
        logger.info(f"Building Rails image with tag {tag}")
        self.build_from_repo(tag, staged={".env": render_env(BUILD_TIME_ENV)})
        self.install_helper("rails/console.sh.j2", "console.sh")
        self.install_helper("rails/logs.sh.j2", "logs.sh")

    def deploy_fresh(self, scale: int, tag: str) -> List[int]:
        ports = super().deploy_fresh(scale, tag)

        first = self.app.web_container_name(1)
        self.migrations_run = False
        if self.has_pending_migrations(first):
            self.run_migrations(first)
            self.migrations_run = True

        image = self.app.image_ref(tag)
        if self.app.has_workers:
            count = self.containers.start_workers(image)
            logger.info(f"✓ Started {count} worker container(s)")
        if self.app.has_scheduler:
            self.containers.start_scheduler(image)
            logger.info("✓ Scheduler container started")
        return ports

    def deploy_rolling(self, scale: int, tag: str, before_cutover: Optional[PortsCallback] = None) -> List[int]:
        self.migrations_run = False
        if self.app.backup.migration_backup:
            self._migrate_in_check_container(tag)

        ports = super().deploy_rolling(scale, tag, before_cutover)

        if not self.app.backup.migration_backup:
            first = self.app.web_container_name(1)
            if self.has_pending_migrations(first):
                self.run_migrations(first)
                self.migrations_run = True

        self.restart_extras(self.app.image_ref(tag))
        return ports

    def restart_extras(self, image: str) -> None:
        if self.app.has_workers:
            count = self.containers.restart_workers(image)
            logger.info(f"✓ Restarted {count} worker container(s)")
        if self.app.has_scheduler:
            self.containers.restart_scheduler(image)
            logger.info("✓ Scheduler container restarted")

    def summary_lines(self, result: DeploymentResult) -> List[str]:
        lines = super().summary_lines(result)
        lines += ["DEPLOYMENT:", f"  Migrations: {'Executed' if result.migrations_run else 'Not needed'}", ""]
        if self.app.has_workers:
            lines += [
                "WORKERS:",
                f"  Count: {self.app.containers.worker_count}",
                f"  Command: {self.app.containers.worker_command}",
                "",
            ]
        if self.app.has_scheduler:
            lines += ["SCHEDULER:", f"  Container: {self.app.scheduler_container_name()}", ""]

        backups = sorted(self.app.paths.backup_dir.glob("*.sql.gz")) if self.app.paths.backup_dir.is_dir() else []
        lines += [
            "DATABASE:",
            f"  Name: {self.app.database.name}",
            f"  Available Backups: {len(backups)}",
            f"  Latest Backup: {backups[-1].name if backups else '-'}",
            f"  Backup Location: {self.app.paths.backup_dir}",
            "",
        ]
        return lines

    # Interactive

    def _first_web_container(self) -> str:
        running = self.containers.running_web_containers()
        if not running and not self.mock:
            raise DeployError(f"No running web containers for {self.app.name}")
        return running[0] if running else self.app.web_container_name(1)

    def console(self) -> int:
        container = self._first_web_container()
        logger.info(f"Opening Rails console in {container}")
        return self.docker.exec(container, ["bin/rails", "console"], interactive=True).returncode

    def run_task(self, task: str) -> subprocess.CompletedProcess:
        """Run a rails/rake task such as db:seed in the first web container."""
        container = self._first_web_container()
        logger.info(f"Running {task} in {container}")
        return self._rails(container, task)
