"""Error taxonomy for backup, shutdown and restore operations."""

from __future__ import annotations

from typing import Iterable, Optional


class StackVaultError(Exception):
    """Base class for all stackvault domain errors."""

    code = "stackvault_error"


class DirectoryUnavailable(StackVaultError):
    """Raised when a required directory is missing or unreadable."""

    code = "directory_unavailable"


class NoServiceDirectories(StackVaultError):
    """Raised when discovery finds no compose project under the base directory."""

    code = "no_service_directories"


class ToolMissing(StackVaultError):
    """Raised when a required external executable is not on PATH."""

    code = "tool_missing"


class NoFullBackup(StackVaultError):
    """Raised when no Full backup set can root a chain."""

    code = "no_full_backup"


class ChainBroken(StackVaultError):
    """Raised when a chain member is missing, unclassified or unlinked."""

    code = "chain_broken"


class ArchiveCorrupt(StackVaultError):
    """Raised when an archive fails its integrity self-test or cannot be extracted."""

    code = "archive_corrupt"


class ResolutionAmbiguous(StackVaultError):
    """Reserved: more than one equally valid resolution exists."""

    code = "resolution_ambiguous"


class UnresolvableProject(StackVaultError):
    """Raised when a container record cannot be mapped to a project directory."""

    code = "unresolvable_project"


class ContainerUnkillable(StackVaultError):
    """Raised when a container is still running after SIGKILL."""

    code = "container_unkillable"


class HealthTimeout(StackVaultError):
    """Reserved: health polling reports TIMED_OUT as an outcome, not an exception."""

    code = "health_timeout"


class BackupFailed(StackVaultError):
    """Raised when an archive could not be produced or committed."""

    code = "backup_failed"


class PartialFailure(StackVaultError):
    """Aggregate error: some members of a group operation failed."""

    code = "partial_failure"

    def __init__(self, message: str, failed: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.failed = list(failed or [])


# Conditions that make a whole run meaningless (non-zero process exit)
FATAL_ERRORS = (DirectoryUnavailable, NoServiceDirectories, ToolMissing, NoFullBackup)
