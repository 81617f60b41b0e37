"""PostgreSQL provisioning and backups through the local postgres superuser."""
import gzip
import shutil
import subprocess
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dockyard.core.logger import get_logger
from dockyard.services.system import command_exists

logger = get_logger(__name__)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PostgresManager:
    """Runs psql and pg_dump as the postgres system user."""

    def __init__(self, mock: bool = False):
        self.mock = mock

    def _psql(self, sql: str, database: Optional[str] = None) -> Optional[str]:
        """Execute one statement, returning tuples-only output or None on failure."""
        cmd = ["sudo", "-u", "postgres", "psql", "-v", "ON_ERROR_STOP=1", "-tAc", sql]
        if database:
            cmd[4:4] = ["-d", database]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
            return result.stdout.strip()
        except subprocess.CalledProcessError as e:
            logger.error(f"psql failed: {e.stderr.strip() if e.stderr else e}")
            return None

    def user_exists(self, user: str) -> bool:
        if self.mock:
            return False
        return self._psql(f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(user)}") == "1"

    def database_exists(self, database: str) -> bool:
        if self.mock:
            return False
        return self._psql(f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(database)}") == "1"

    def create_user(self, user: str, password: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would create database user {user}")
            return True
        ok = self._psql(f"CREATE USER {quote_ident(user)} WITH PASSWORD {quote_literal(password)}") is not None
        if ok:
            logger.info(f"✓ Created database user {user}")
        return ok

    def reset_password(self, user: str, password: str) -> bool:
        """Align an existing role's password with the one in the env file."""
        if self.mock:
            logger.info(f"MOCK: Would reset password for {user}")
            return True
        ok = self._psql(f"ALTER USER {quote_ident(user)} WITH PASSWORD {quote_literal(password)}") is not None
        if ok:
            logger.info(f"✓ Updated password for existing user {user}")
        return ok

    def create_database(self, database: str, owner: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would create database {database}")
            return True
        ok = self._psql(f"CREATE DATABASE {quote_ident(database)} OWNER {quote_ident(owner)}") is not None
        if ok:
            logger.info(f"✓ Created database {database}")
        return ok

    def grant_privileges(self, database: str, user: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would grant privileges on {database} to {user}")
            return True

        db, role = quote_ident(database), quote_ident(user)
        statements = [
            (None, f"GRANT ALL PRIVILEGES ON DATABASE {db} TO {role}"),
            (database, f"GRANT ALL ON SCHEMA public TO {role}"),
            (database, f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TABLES TO {role}"),
            (database, f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON SEQUENCES TO {role}"),
        ]
        for target, sql in statements:
            if self._psql(sql, database=target) is None:
                return False
        logger.info(f"✓ Granted privileges on {database} to {user}")
        return True

    def ensure_database(self, database: str, user: str, password: str) -> bool:
        """Create or update the role, create the database, grant privileges."""
        if self.user_exists(user):
            if not self.reset_password(user, password):
                return False
        elif not self.create_user(user, password):
            return False

        if self.database_exists(database):
            logger.info(f"Database {database} already exists")
        elif not self.create_database(database, user):
            return False

        return self.grant_privileges(database, user)

    def backup(self, database: str, backup_dir: Path) -> Optional[Path]:
        """pg_dump streamed into <backup_dir>/<database>_<timestamp>.sql.gz."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        target = Path(backup_dir) / f"{database}_{timestamp}.sql.gz"

        if self.mock:
            logger.info(f"MOCK: Would back up {database} to {target}")
            return target

        target.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Backing up database {database}...")
        try:
            # An unread stderr pipe would block pg_dump once it fills
            with tempfile.TemporaryFile() as error_log:
                with subprocess.Popen(
                    ["sudo", "-u", "postgres", "pg_dump", database],
                    stdout=subprocess.PIPE,
                    stderr=error_log,
                ) as proc:
                    with gzip.open(target, "wb") as out:
                        shutil.copyfileobj(proc.stdout, out)
                error_log.seek(0)
                stderr = error_log.read().decode(errors="replace")
        except OSError as e:
            logger.error(f"✗ Database backup failed: {e}")
            target.unlink(missing_ok=True)
            return None

        if proc.returncode != 0:
            logger.error(f"✗ pg_dump failed: {stderr.strip()}")
            target.unlink(missing_ok=True)
            return None

        logger.info(f"✓ Database backed up to {target}")
        return target

    def check_prerequisites(self) -> List[str]:
        """Problems preventing a Rails app from using postgres and redis."""
        if self.mock:
            return []

        problems = []
        if not command_exists("psql"):
            problems.append("PostgreSQL client (psql) is not installed")
        if not command_exists("redis-cli"):
            problems.append("Redis client (redis-cli) is not installed")
        else:
            ping = subprocess.run(["redis-cli", "ping"], capture_output=True, text=True, check=False)
            if "PONG" not in (ping.stdout or ""):
                problems.append("Redis is not responding to ping")
        return problems
