"""
Registry Guard Custom Exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

All custom exception classes for plyra-registry, organized by domain.
Every distinct failure mode has its own exception type.

**Structured Error Messages**

Precondition failures that the operator has to fix by hand provide
structured fields:
- ``what_happened``: Clear plain-English description
- ``how_to_fix``: Concrete, actionable steps
"""

from __future__ import annotations

from typing import Any

__all__ = [
    # Base
    "RegistryGuardError",
    # Config
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    # Registry document
    "RegistryError",
    "RegistryNotFoundError",
    "RegistryParseError",
    "RegistryWriteError",
    "RegistryConflictError",
    "RegistryLockError",
    # Patch
    "PatchError",
    "InvalidPatchError",
    "PatchApplicationError",
    "UndoPatchFormatError",
    # Backup
    "BackupError",
    "BackupCreationError",
    "BackupNotFoundError",
    # Rollback
    "RollbackError",
    "RollbackSourceError",
    "RollbackFailedError",
    "RollbackValidationError",
    # Session
    "SessionError",
    "PlannerError",
    "StepFailedError",
    "SessionFailedError",
    # Approval
    "ApprovalError",
    # Collaborators
    "TranspileError",
    "VersionControlError",
    "DeployActionError",
]


# ── Formatting Helper ────────────────────────────────────────────────────────

_SEPARATOR = "─" * 52


def _format_structured_error(
    title: str,
    what_happened: str,
    how_to_fix: str,
) -> str:
    """Build a structured, multi-line error message."""
    lines = [
        f"  {title}",
        f"  {_SEPARATOR}",
        "  What happened:",
        *[f"    {line}" for line in what_happened.strip().splitlines()],
        "",
        "  How to fix:",
        *[f"    {line}" for line in how_to_fix.strip().splitlines()],
    ]
    return "\n".join(lines)


# ── Base Exception ───────────────────────────────────────────────────────────


class RegistryGuardError(Exception):
    """Base exception for all plyra-registry errors."""

    def __init__(self, message: str = "", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Config Exceptions ────────────────────────────────────────────────────────


class ConfigError(RegistryGuardError):
    """Base exception for configuration-related errors."""


class ConfigFileNotFoundError(ConfigError):
    """Raised when a configuration file cannot be found at the specified path."""


class ConfigValidationError(ConfigError):
    """Raised when configuration values fail validation."""


# ── Registry Exceptions ──────────────────────────────────────────────────────


class RegistryError(RegistryGuardError):
    """Base exception for errors reading or writing the registry document."""


class RegistryNotFoundError(RegistryError):
    """
    Raised when the canonical registry file does not exist.

    Structured fields:
    - ``what_happened``: which file was expected
    - ``how_to_fix``: the command that produces the registry
    """

    def __init__(
        self,
        message: str = "Registry not found",
        path: str = "",
        details: dict | None = None,
        what_happened: str = "",
        how_to_fix: str = "",
    ) -> None:
        self.path = path
        self.what_happened = what_happened or (
            f"No registry file exists at {path}."
        )
        self.how_to_fix = how_to_fix or (
            "1. Run the registry build first to produce the registry file\n"
            "2. Or point --registry-path at an existing registry.json"
        )
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"RegistryNotFoundError: {self.args[0]}",
            what_happened=self.what_happened,
            how_to_fix=self.how_to_fix,
        )


class RegistryParseError(RegistryError):
    """Raised when a registry (or backup) file is not valid JSON."""


class RegistryWriteError(RegistryError):
    """Raised when the registry document cannot be written to disk."""


class RegistryConflictError(RegistryError):
    """Raised when the registry changed on disk after it was loaded."""


class RegistryLockError(RegistryError):
    """Raised when the advisory registry lock cannot be acquired in time."""


# ── Patch Exceptions ─────────────────────────────────────────────────────────


class PatchError(RegistryGuardError):
    """Base exception for patch operation errors."""


class InvalidPatchError(PatchError):
    """Raised when a patch operation is structurally invalid."""


class PatchApplicationError(PatchError):
    """
    Raised when patch operations cannot be applied.

    ``failures`` holds one ``{"index", "operation", "error"}`` entry
    per operation that failed.
    """

    def __init__(
        self,
        message: str = "Patch application failed",
        failures: list[dict[str, Any]] | None = None,
        details: dict | None = None,
    ) -> None:
        self.failures = failures or []
        super().__init__(message, details)


class UndoPatchFormatError(PatchError):
    """Raised when an undo patch file has an unrecognized layout."""


# ── Backup Exceptions ────────────────────────────────────────────────────────


class BackupError(RegistryGuardError):
    """Base exception for backup store errors."""


class BackupCreationError(BackupError):
    """Raised when a backup cannot be written."""


class BackupNotFoundError(BackupError):
    """Raised when no backup exists for a registry."""


# ── Rollback Exceptions ──────────────────────────────────────────────────────


class RollbackError(RegistryGuardError):
    """Base exception for rollback errors."""


class RollbackSourceError(RollbackError):
    """Raised when a rollback source cannot be resolved or parsed."""


class RollbackFailedError(RollbackError):
    """Raised when a resolved rollback cannot be applied."""


class RollbackValidationError(RollbackError):
    """Raised when mandatory validation rejects the rolled-back document."""


# ── Session Exceptions ───────────────────────────────────────────────────────


class SessionError(RegistryGuardError):
    """Base exception for orchestrator session errors."""


class PlannerError(SessionError):
    """Raised when the planner cannot produce a mutation plan."""


class StepFailedError(SessionError):
    """Raised inside a step to mark it failed with a message."""

    def __init__(
        self,
        message: str = "Step failed",
        step_name: str = "",
        details: dict | None = None,
    ) -> None:
        self.step_name = step_name
        super().__init__(message, details)


class SessionFailedError(SessionError):
    """
    Raised after a failed session has been finalized and logged.

    The finalized session is available as ``session``.
    """

    def __init__(
        self,
        message: str = "Session failed",
        session: Any = None,
        details: dict | None = None,
    ) -> None:
        self.session = session
        super().__init__(message, details)


# ── Approval Exceptions ──────────────────────────────────────────────────────


class ApprovalError(RegistryGuardError):
    """Base exception for approval errors."""


# ── Collaborator Exceptions ──────────────────────────────────────────────────


class TranspileError(RegistryGuardError):
    """Raised when a transpile target is unsupported or fails."""


class VersionControlError(RegistryGuardError):
    """Raised when a version control command fails."""


class DeployActionError(RegistryGuardError):
    """Raised by a deploy sub-action; captured in its result."""
