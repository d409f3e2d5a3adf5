"""
Rollback Manager
~~~~~~~~~~~~~~~~

Restores the registry from a backup or an undo patch, lists the
available rollback points, and prunes old backups.

Source resolution, in order:

1. ``"last"``: the newest backup of the registry.
2. An existing file. An undo patch (a JSON array, or an object with
   ``patches`` / ``undoPatches``) is applied to the current registry;
   any other JSON object is a full backup copy.
3. A session id whose undo patch is still in the undo directory.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from plyra_registry.collaborators.validator import BaseValidator, default_validator
from plyra_registry.config.schema import RegistryConfig
from plyra_registry.core.document import (
    load_registry,
    read_json,
    registry_lock,
    save_registry,
)
from plyra_registry.core.patch import PatchOperation, apply_patch, parse_undo_patch
from plyra_registry.exceptions import (
    PatchApplicationError,
    RegistryParseError,
    RollbackFailedError,
    RollbackSourceError,
    RollbackValidationError,
    UndoPatchFormatError,
)
from plyra_registry.observability.session_log import SessionLog
from plyra_registry.rollback.backup_store import BackupStore, PruneReport

__all__ = ["RollbackPoint", "RollbackResult", "ResolvedSource", "RollbackManager"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollbackPoint:
    """A backup or persisted undo patch that ``rollback`` can consume."""

    type: str
    path: str
    created: datetime
    size: int
    description: str
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "path": self.path,
            "created": self.created.isoformat(),
            "size": self.size,
            "description": self.description,
            "sessionId": self.session_id,
        }


@dataclass
class ResolvedSource:
    """A rollback source after resolution."""

    method: str
    path: str
    document: Any = None
    operations: list[PatchOperation] = field(default_factory=list)


@dataclass
class RollbackResult:
    """
    Outcome of a completed rollback.

    Attributes:
        success: Always True for a returned result; failures raise.
        method: ``backup`` or ``undo_patch``.
        source: The resolved source file.
        output_path: Where the restored registry was written.
        backup_path: Pre-rollback backup, if one was taken.
        patches_applied: Undo operations applied (0 for a backup).
        warnings: Non-mandatory validation failures and similar.
        document: The restored registry document.
    """

    success: bool
    method: str
    source: str
    output_path: str
    backup_path: str | None = None
    patches_applied: int = 0
    warnings: list[str] = field(default_factory=list)
    document: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "method": self.method,
            "source": self.source,
            "outputPath": self.output_path,
            "backupPath": self.backup_path,
            "patchesApplied": self.patches_applied,
            "warnings": list(self.warnings),
        }


def _is_undo_patch(data: Any) -> bool:
    return isinstance(data, list) or (
        isinstance(data, dict) and ("patches" in data or "undoPatches" in data)
    )


class RollbackManager:
    """
    Coordinates registry rollbacks.

    Every rollback follows the same order: resolve the source, compute
    the restored document, validate it, take the registry lock, back up
    the current registry, write atomically, and append a rollback record
    to the session log. Any failure before the write leaves the
    registry untouched.
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        backup_store: BackupStore | None = None,
        session_log: SessionLog | None = None,
        validator: BaseValidator | None = None,
    ) -> None:
        self._config = config or RegistryConfig()
        self._backups = backup_store or BackupStore(self._config.backup.dir)
        self._log = session_log or SessionLog(self._config.history.file)
        self._validator = validator or default_validator(
            self._config.validation.schema_path
        )
        self._undo_dir = self._config.history.undo_dir

    @property
    def backup_store(self) -> BackupStore:
        return self._backups

    # ── Resolution ───────────────────────────────────────────────

    def resolve_source(self, registry_path: str, source: str = "last") -> ResolvedSource:
        """
        Resolve ``source`` to a backup document or undo operations.

        Raises:
            BackupNotFoundError: ``"last"`` with no backups.
            RollbackSourceError: Anything that does not resolve.
        """
        if source == "last":
            backup = self._backups.resolve_last(registry_path)
            return ResolvedSource(
                method="backup",
                path=backup.path,
                document=self._read_source(backup.path),
            )

        if os.path.exists(source):
            data = self._read_source(source)
            if _is_undo_patch(data):
                return ResolvedSource(
                    method="undo_patch",
                    path=source,
                    operations=self._parse_undo(source, data),
                )
            if isinstance(data, dict):
                return ResolvedSource(method="backup", path=source, document=data)
            raise RollbackSourceError(
                f"Rollback source {source} is neither a backup nor an undo patch"
            )

        undo_path = os.path.join(self._undo_dir, f"{source}.json")
        if os.path.isfile(undo_path):
            data = self._read_source(undo_path)
            return ResolvedSource(
                method="undo_patch",
                path=undo_path,
                operations=self._parse_undo(undo_path, data),
            )

        raise RollbackSourceError(f"Rollback source not found: {source}")

    @staticmethod
    def _read_source(path: str) -> Any:
        try:
            return read_json(path)
        except (RegistryParseError, OSError) as exc:
            raise RollbackSourceError(f"Cannot read rollback source {path}: {exc}") from exc

    @staticmethod
    def _parse_undo(path: str, data: Any) -> list[PatchOperation]:
        try:
            return parse_undo_patch(data)
        except UndoPatchFormatError as exc:
            raise RollbackSourceError(f"Invalid undo patch {path}: {exc}") from exc

    # ── Rollback ─────────────────────────────────────────────────

    def rollback(
        self,
        registry_path: str | None = None,
        source: str = "last",
        output_path: str | None = None,
        no_backup: bool = False,
        no_validate: bool = False,
    ) -> RollbackResult:
        """
        Restore the registry from ``source``.

        Args:
            registry_path: Canonical registry (config default if None).
            source: ``"last"``, a backup or undo patch path, or a session id.
            output_path: Write the result here instead of the registry.
            no_backup: Skip the pre-rollback backup.
            no_validate: Skip validation of the restored document.

        Raises:
            BackupNotFoundError: ``"last"`` with no backups.
            RollbackSourceError: Unresolvable or unreadable source.
            RollbackFailedError: The undo patch does not apply.
            RollbackValidationError: Mandatory validation failed.
            BackupCreationError: The pre-rollback backup failed.
            RegistryLockError: The registry lock timed out.
            RegistryWriteError: The restored registry cannot be written.
        """
        registry_path = registry_path or self._config.registry.path
        resolved = self.resolve_source(registry_path, source)
        logger.info("Rolling back %s from %s (%s)", registry_path, resolved.path, resolved.method)

        patches_applied = 0
        if resolved.method == "backup":
            document = resolved.document
        else:
            current = load_registry(registry_path)
            try:
                patched = apply_patch(current, resolved.operations, all_or_nothing=True)
            except PatchApplicationError as exc:
                raise RollbackFailedError(f"Undo patch could not be applied: {exc}") from exc
            document = patched.document
            patches_applied = patched.applied

        warnings: list[str] = []
        if not no_validate and self._config.validation.enabled:
            report = self._validator.validate(document)
            if not report.valid:
                if self._config.validation.mandatory:
                    raise RollbackValidationError(
                        "Rolled-back registry failed validation: "
                        + "; ".join(report.errors),
                        details={"errors": report.errors},
                    )
                for error in report.errors:
                    logger.warning("Validation warning after rollback: %s", error)
                warnings.extend(f"validation: {error}" for error in report.errors)

        target = output_path or registry_path
        backup_path = None
        with registry_lock(registry_path, self._config.lock.timeout_seconds):
            if not no_backup and os.path.isfile(registry_path):
                backup_path = self._backups.create_backup(registry_path, kind="rollback").path
            save_registry(target, document)

        result = RollbackResult(
            success=True,
            method=resolved.method,
            source=resolved.path,
            output_path=target,
            backup_path=backup_path,
            patches_applied=patches_applied,
            warnings=warnings,
            document=document,
        )
        self._record(registry_path, result)
        logger.info("Rollback of %s complete", registry_path)
        return result

    async def rollback_async(self, *args: Any, **kwargs: Any) -> RollbackResult:
        """Async version of rollback."""
        return await asyncio.to_thread(self.rollback, *args, **kwargs)

    def _record(self, registry_path: str, result: RollbackResult) -> None:
        entry = {
            "operation": "rollback",
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "registryPath": registry_path,
            "source": result.source,
            "method": result.method,
            "outputPath": result.output_path,
            "backup": {"created": result.backup_path is not None, "path": result.backup_path},
            "patchesApplied": result.patches_applied,
            "warnings": result.warnings,
            "success": result.success,
        }
        try:
            self._log.append(entry)
        except OSError as exc:
            # the registry is already restored; report instead of failing
            logger.error("Failed to record rollback in %s: %s", self._log.path, exc)
            result.warnings.append(f"history: {exc}")

    # ── Listing & cleanup ────────────────────────────────────────

    def list_rollback_points(self, registry_path: str | None = None) -> list[RollbackPoint]:
        """Backups and surviving session undo patches, newest first."""
        registry_path = registry_path or self._config.registry.path
        points = [
            RollbackPoint(
                type="backup",
                path=b.path,
                created=b.created,
                size=b.size,
                description=f"{b.kind} backup",
            )
            for b in self._backups.list_backups(registry_path)
        ]

        for entry in self._log.entries("session"):
            undo = entry.get("undo") or {}
            path = undo.get("path")
            if not undo.get("created") or not path or not os.path.isfile(path):
                continue
            try:
                created = datetime.fromisoformat(entry.get("timestamp", ""))
            except ValueError:
                created = datetime.fromtimestamp(os.path.getmtime(path), UTC)
            if created.tzinfo is None:
                created = created.replace(tzinfo=UTC)
            prompt = str(entry.get("prompt", ""))
            points.append(
                RollbackPoint(
                    type="undo_patch",
                    path=path,
                    created=created,
                    size=os.path.getsize(path),
                    description=prompt if len(prompt) <= 60 else prompt[:57] + "...",
                    session_id=entry.get("sessionId"),
                )
            )

        points.sort(key=lambda p: p.created, reverse=True)
        return points

    def cleanup(self, registry_path: str | None = None, keep: int | None = None) -> PruneReport:
        """Keep only the ``keep`` newest backups (config default if None)."""
        registry_path = registry_path or self._config.registry.path
        return self._backups.prune(
            registry_path, keep if keep is not None else self._config.backup.keep
        )
