"""
Registry Document I/O
~~~~~~~~~~~~~~~~~~~~~

Reading, atomically writing and locking the canonical registry file.

The registry is treated as opaque JSON except for the handful of
fields used for reporting: the ``components`` list (and each
component's ``name``) and the ``tokens`` category map.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from filelock import FileLock, Timeout

from plyra_registry.exceptions import (
    RegistryLockError,
    RegistryNotFoundError,
    RegistryParseError,
    RegistryWriteError,
)

__all__ = [
    "load_registry",
    "read_json",
    "save_registry",
    "fingerprint",
    "registry_lock",
    "component_names",
    "count_tokens",
]

logger = logging.getLogger(__name__)


def read_json(path: str) -> Any:
    """
    Parse a JSON file.

    Raises:
        RegistryParseError: If the file is not valid JSON.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RegistryParseError(f"Invalid JSON in {path}: {exc}") from exc


def load_registry(path: str) -> Any:
    """
    Load the canonical registry document.

    Raises:
        RegistryNotFoundError: If ``path`` does not exist.
        RegistryParseError: If the file is not valid JSON.
    """
    if not os.path.isfile(path):
        raise RegistryNotFoundError("Registry not found", path=path)
    return read_json(path)


def save_registry(path: str, document: Any) -> None:
    """
    Write ``document`` to ``path`` atomically.

    The JSON is written to a temporary file in the destination directory
    and moved into place with ``os.replace``, so readers see either the
    old file or the new one.

    Raises:
        RegistryWriteError: If the file cannot be written.
    """
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    except (OSError, TypeError, ValueError) as exc:
        raise RegistryWriteError(f"Failed to write registry {path}: {exc}") from exc
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
    logger.debug("Wrote registry %s", path)


def fingerprint(path: str) -> str | None:
    """Return the SHA-256 of the file contents, or None if it is missing."""
    if not os.path.isfile(path):
        return None
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


@contextmanager
def registry_lock(path: str, timeout: float = 30.0) -> Iterator[None]:
    """
    Hold the advisory ``<registry>.lock`` around a read-modify-write.

    Raises:
        RegistryLockError: If the lock is not acquired within ``timeout``.
    """
    lock_path = f"{os.path.abspath(path)}.lock"
    os.makedirs(os.path.dirname(lock_path), exist_ok=True)
    lock = FileLock(lock_path, timeout=timeout)
    try:
        lock.acquire()
    except Timeout as exc:
        raise RegistryLockError(
            f"Could not acquire registry lock {lock_path} within {timeout}s"
        ) from exc
    try:
        yield
    finally:
        lock.release()


def component_names(document: Any) -> list[str]:
    """Names of the registry's components, in document order."""
    if not isinstance(document, dict):
        return []
    components = document.get("components")
    if not isinstance(components, list):
        return []
    return [
        c["name"] for c in components if isinstance(c, dict) and "name" in c
    ]


def count_tokens(document: Any) -> int:
    """Total number of design tokens across all categories."""
    if not isinstance(document, dict):
        return 0
    tokens = document.get("tokens")
    if not isinstance(tokens, dict):
        return 0
    total = 0
    for category in tokens.values():
        total += len(category) if isinstance(category, dict) else 1
    return total
