"""Process exit codes for CLI commands.

These values are used as process exit codes and should remain stable:
- 0: Success
- 1: User error (bad manifest, addon fragment or patch rule)
- 2: Environment error (no workspace, missing credentials)
- 4: Network error (control plane or object store unreachable)
- 5: I/O error (file not found, permission denied)
- 6: Deployment failed
- 7: Stack needs manual recovery (rollback disabled or rollback failed)

The diff-only mode does not use these; see ``DiffExitCode``.
"""

from enum import IntEnum

__all__ = ["ErrorCode", "DiffExitCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands."""

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    NETWORK_ERROR = 4
    IO_ERROR = 5
    DEPLOY_FAILED = 6
    RECOVERY_REQUIRED = 7

    def __str__(self) -> str:
        """Return human-readable name."""
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK


class DiffExitCode(IntEnum):
    """Exit codes of ``deploy --diff``, mirroring ``diff(1)``."""

    NO_DIFFERENCES = 0
    DIFFERENCES = 1
    ERROR = 2
