"""
Backup Store
~~~~~~~~~~~~

Timestamped full copies of the registry file, kept in a backup
directory and pruned to the N most recent.

Each registry gets its own subdirectory, ``<stem>-<key>``, where ``key``
is a short digest of the registry's absolute path, so registries sharing
a file name never share backups. Backup names follow ``<stem>-<kind>-<YYYYMMDDTHHMMSSffffffZ>[_<seq>].json``.
The timestamp sorts lexically in chronological order and ``_<seq>``
only appears when two backups land on the same microsecond.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from plyra_registry.exceptions import BackupCreationError, BackupNotFoundError

__all__ = ["BACKUP_KINDS", "Backup", "PruneReport", "BackupStore"]

logger = logging.getLogger(__name__)

BACKUP_KINDS = ("mutation", "rollback", "manual")

_TS_FORMAT = "%Y%m%dT%H%M%S%fZ"
_NAME_RE = re.compile(
    r"^(?P<stem>.+)-(?P<kind>mutation|rollback|manual)-"
    r"(?P<ts>\d{8}T\d{12}Z)(?:_(?P<seq>\d+))?\.json$"
)


def _registry_stem(registry_path: str) -> str:
    return os.path.splitext(os.path.basename(registry_path))[0]


def _registry_key(registry_path: str) -> str:
    digest = hashlib.sha256(os.path.abspath(registry_path).encode("utf-8"))
    return f"{_registry_stem(registry_path)}-{digest.hexdigest()[:12]}"


@dataclass(frozen=True)
class Backup:
    """
    A single backup file.

    Attributes:
        path: Location of the backup file.
        registry_stem: File stem of the registry it copies.
        kind: ``mutation``, ``rollback`` or ``manual``.
        created: Timestamp encoded in the name.
        seq: Collision suffix (0 when absent).
        size: File size in bytes.
    """

    path: str
    registry_stem: str
    kind: str
    created: datetime
    seq: int = 0
    size: int = 0

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.created, self.seq)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "kind": self.kind,
            "created": self.created.isoformat(),
            "size": self.size,
        }


@dataclass
class PruneReport:
    """Outcome of a retention pass."""

    removed: list[str] = field(default_factory=list)
    retained: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "removed": list(self.removed),
            "retained": list(self.retained),
            "failed": list(self.failed),
        }


class BackupStore:
    """
    Creates, lists and prunes registry backups.

    Backups are never overwritten: every name is reserved with an
    exclusive create before the registry is copied into it.

    Args:
        backup_dir: Directory holding the backups.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        backup_dir: str = "./.registry-backups",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backup_dir = backup_dir
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def backup_dir(self) -> str:
        return self._backup_dir

    def registry_backup_dir(self, registry_path: str) -> str:
        """Subdirectory holding the backups of ``registry_path``."""
        return os.path.join(self._backup_dir, _registry_key(registry_path))

    def create_backup(self, registry_path: str, kind: str = "manual") -> Backup:
        """
        Copy the registry file into the backup directory.

        Raises:
            BackupCreationError: If the source is missing or the backup
                cannot be written.
        """
        if kind not in BACKUP_KINDS:
            raise BackupCreationError(f"Unknown backup kind: {kind!r}")
        if not os.path.isfile(registry_path):
            raise BackupCreationError(
                f"Cannot back up missing registry: {registry_path}"
            )

        stem = _registry_stem(registry_path)
        created = self._clock()
        stamp = created.astimezone(UTC).strftime(_TS_FORMAT)

        directory = self.registry_backup_dir(registry_path)
        try:
            os.makedirs(directory, exist_ok=True)
            seq = 0
            while True:
                suffix = f"_{seq}" if seq else ""
                path = os.path.join(directory, f"{stem}-{kind}-{stamp}{suffix}.json")
                try:
                    with open(path, "xb"):
                        pass
                    break
                except FileExistsError:
                    seq += 1
            shutil.copy2(registry_path, path)
        except OSError as exc:
            raise BackupCreationError(
                f"Failed to create backup of {registry_path}: {exc}"
            ) from exc

        backup = Backup(
            path=path,
            registry_stem=stem,
            kind=kind,
            created=created.astimezone(UTC),
            seq=seq,
            size=os.path.getsize(path),
        )
        logger.info("Created %s backup %s", kind, path)
        return backup

    def list_backups(self, registry_path: str) -> list[Backup]:
        """All backups of ``registry_path``, newest first."""
        directory = self.registry_backup_dir(registry_path)
        if not os.path.isdir(directory):
            return []

        stem = _registry_stem(registry_path)
        backups: list[Backup] = []
        for name in os.listdir(directory):
            match = _NAME_RE.match(name)
            if match is None or match.group("stem") != stem:
                continue
            path = os.path.join(directory, name)
            try:
                size = os.path.getsize(path)
            except OSError:
                continue
            backups.append(
                Backup(
                    path=path,
                    registry_stem=stem,
                    kind=match.group("kind"),
                    created=datetime.strptime(match.group("ts"), _TS_FORMAT).replace(
                        tzinfo=UTC
                    ),
                    seq=int(match.group("seq") or 0),
                    size=size,
                )
            )

        backups.sort(key=lambda b: b.sort_key, reverse=True)
        return backups

    def resolve_last(self, registry_path: str) -> Backup:
        """
        Return the newest backup of ``registry_path``.

        Raises:
            BackupNotFoundError: If there are none.
        """
        backups = self.list_backups(registry_path)
        if not backups:
            raise BackupNotFoundError(
                f"no backup found for {registry_path} in {self._backup_dir}"
            )
        return backups[0]

    def prune(self, registry_path: str, keep: int = 10) -> PruneReport:
        """
        Delete all but the ``keep`` newest backups.

        Deletion failures are logged and reported; they never stop the
        remaining deletions.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")

        backups = self.list_backups(registry_path)
        report = PruneReport(retained=[b.path for b in backups[:keep]])

        for backup in backups[keep:]:
            try:
                os.remove(backup.path)
            except OSError as exc:
                logger.error("Failed to delete backup %s: %s", backup.path, exc)
                report.failed.append({"path": backup.path, "error": str(exc)})
                continue
            report.removed.append(backup.path)

        if report.removed:
            logger.info(
                "Pruned %d backup(s) of %s, kept %d",
                len(report.removed),
                registry_path,
                len(report.retained),
            )
        return report
