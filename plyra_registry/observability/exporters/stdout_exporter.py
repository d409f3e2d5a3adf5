"""
Stdout Exporter
~~~~~~~~~~~~~~~

Echoes session log records as JSON lines to stdout.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterable
from typing import Any

__all__ = ["StdoutExporter"]


class StdoutExporter:
    """
    Mirrors session and rollback records onto a stream.

    Args:
        stream: Target stream (stdout by default).
        pretty: Indent each record instead of one line per record.
        operations: Only echo records of these kinds (``session``,
            ``rollback``); all records when None.
    """

    def __init__(
        self,
        stream: object | None = None,
        pretty: bool = False,
        operations: Iterable[str] | None = None,
    ) -> None:
        self._stream = stream or sys.stdout
        self._pretty = pretty
        self._operations = set(operations) if operations is not None else None

    def export(self, entry: dict[str, Any]) -> None:
        kind = entry.get("operation", "session")
        if self._operations is not None and kind not in self._operations:
            return
        text = json.dumps(entry, indent=2 if self._pretty else None, default=str)
        self._stream.write(text + "\n")  # type: ignore[union-attr]
        self._stream.flush()  # type: ignore[union-attr]
