"""
Session Log
~~~~~~~~~~~

Append-only JSON-Lines record of every mutation session and rollback.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from typing import Any

__all__ = ["SessionLog"]

logger = logging.getLogger(__name__)


class SessionLog:
    """
    JSON-Lines session history with exporter fan-out.

    Every finalized session (successful or not) and every rollback is
    appended as one line; existing lines are never rewritten. Entries
    are also forwarded to configured exporters, whose failures are
    logged and otherwise ignored.
    """

    def __init__(self, path: str = "./mutations.log.jsonl") -> None:
        self._path = path
        self._sync_lock = threading.RLock()
        self._exporters: list[Any] = []

    @property
    def path(self) -> str:
        return self._path

    def add_exporter(self, exporter: Any) -> None:
        """Add an exporter to receive log entries."""
        self._exporters.append(exporter)

    def append(self, entry: dict[str, Any]) -> None:
        """
        Append ``entry`` as a single JSON line.

        Raises:
            OSError: If the log file cannot be written.
        """
        line = json.dumps(entry, default=str, ensure_ascii=False)
        directory = os.path.dirname(os.path.abspath(self._path))
        with self._sync_lock:
            os.makedirs(directory, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

        for exporter in self._exporters:
            try:
                exporter.export(entry)
            except Exception as exc:
                logger.error(
                    "Exporter %s failed: %s",
                    type(exporter).__name__,
                    exc,
                )

    async def append_async(self, entry: dict[str, Any]) -> None:
        """Async version of append."""
        await asyncio.to_thread(self.append, entry)

    def entries(self, operation: str | None = None) -> list[dict[str, Any]]:
        """
        Read all entries in file order.

        Malformed lines are skipped with a warning.
        """
        if not os.path.isfile(self._path):
            return []

        results: list[dict[str, Any]] = []
        with self._sync_lock, open(self._path, encoding="utf-8") as f:
            for lineno, raw in enumerate(f, start=1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    entry = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed line %d in %s", lineno, self._path)
                    continue
                if not isinstance(entry, dict):
                    continue
                # lines written before the discriminator existed are sessions
                kind = entry.get("operation", "session")
                if operation is None or kind == operation:
                    results.append(entry)
        return results

    def history(
        self,
        limit: int = 10,
        operation: str | None = "session",
    ) -> list[dict[str, Any]]:
        """The ``limit`` most recent entries, newest first."""
        entries = self.entries(operation)
        entries.reverse()
        return entries[:limit] if limit > 0 else entries

    def __len__(self) -> int:
        return len(self.entries())
