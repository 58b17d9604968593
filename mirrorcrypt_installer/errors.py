from __future__ import annotations

from typing import Optional, Sequence


class InstallerError(Exception):
    """Base class for every failure the installer reports to the operator."""


class ConfigurationError(InstallerError):
    """Bad plan or inputs. Raised before anything on disk is touched."""


class ConflictError(InstallerError):
    """Target devices carry RAID/LUKS/partition state from an earlier run."""


class CommandError(InstallerError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(self.argv)}\n{stderr}".rstrip())


class StageError(InstallerError):
    """A construction stage failed partway; the stack must be torn down."""

    def __init__(self, step_id: str, message: str) -> None:
        self.step_id = step_id
        super().__init__(f"{step_id}: {message}")


class SecondaryContextError(InstallerError):
    """A generated script failed inside the target root."""

    def __init__(self, script: str, returncode: Optional[int], message: str = "") -> None:
        self.script = script
        self.returncode = returncode
        detail = message or f"exited with status {returncode}"
        super().__init__(f"{script}: {detail}")


class ProvisioningInterrupted(BaseException):
    """Raised from the signal handler so pending ``finally`` blocks still run."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(f"interrupted by signal {signum}")
