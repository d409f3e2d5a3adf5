"""
Version Control
~~~~~~~~~~~~~~~

Thin interface over the version control operations the deploy step
needs, with a ``git`` command-line implementation.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod

from plyra_registry.exceptions import VersionControlError

__all__ = ["VersionControl", "GitClient"]

logger = logging.getLogger(__name__)


class VersionControl(ABC):
    """Operations used to commit and tag a registry change."""

    @abstractmethod
    def is_repo(self) -> bool: ...

    @abstractmethod
    def init(self) -> None: ...

    @abstractmethod
    def add(self, paths: list[str]) -> None: ...

    @abstractmethod
    def commit(self, message: str) -> str:
        """Commit staged changes and return the commit hash."""
        ...

    @abstractmethod
    def tag(self, name: str, message: str = "") -> None: ...


class GitClient(VersionControl):
    """
    Shells out to ``git`` in ``repo_dir``.

    Every failing command raises VersionControlError with git's stderr.
    """

    def __init__(self, repo_dir: str = ".", timeout: float = 30.0) -> None:
        self._repo_dir = repo_dir
        self._timeout = timeout

    def _run(self, *args: str) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self._repo_dir,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise VersionControlError(f"git {args[0]} failed: {exc}") from exc
        if result.returncode != 0:
            raise VersionControlError(
                f"git {args[0]} failed: {result.stderr.strip() or result.stdout.strip()}"
            )
        return result.stdout.strip()

    def is_repo(self) -> bool:
        try:
            return self._run("rev-parse", "--is-inside-work-tree") == "true"
        except VersionControlError:
            return False

    def init(self) -> None:
        self._run("init")
        logger.info("Initialized git repository in %s", self._repo_dir)

    def add(self, paths: list[str]) -> None:
        if paths:
            self._run("add", "--", *paths)

    def commit(self, message: str) -> str:
        self._run("commit", "-m", message)
        return self._run("rev-parse", "HEAD")

    def tag(self, name: str, message: str = "") -> None:
        self._run("tag", "-a", name, "-m", message or name)
