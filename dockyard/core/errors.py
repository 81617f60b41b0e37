"""Exception hierarchy for deployment workflows."""
from typing import List, Optional


class DockyardError(Exception):
    """Base class for errors that abort a dockyard workflow."""


class DeployError(DockyardError):
    """A mandatory deploy step failed."""


class SetupError(DockyardError):
    """A mandatory setup step failed."""


class CommandError(DockyardError):
    """An external command exited with a non-zero status."""

    def __init__(self, argv: List[str], returncode: int, stderr: Optional[str] = None):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"Command failed ({returncode}): {' '.join(self.argv)}"
        if self.stderr:
            message += f"\n{self.stderr}"
        super().__init__(message)
