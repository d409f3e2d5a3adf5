"""Registry rollback: backups, undo patch consumption and retention."""

from plyra_registry.rollback.backup_store import Backup, BackupStore, PruneReport
from plyra_registry.rollback.manager import (
    RollbackManager,
    RollbackPoint,
    RollbackResult,
)

__all__ = [
    "Backup",
    "BackupStore",
    "PruneReport",
    "RollbackManager",
    "RollbackPoint",
    "RollbackResult",
]
