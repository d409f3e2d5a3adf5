"""
Transpilers
~~~~~~~~~~~

Interface for turning the registry into framework code, and the
registry of named transpile targets. Concrete code generation lives
in external packages that register themselves here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from plyra_registry.exceptions import TranspileError

__all__ = ["TranspileResult", "BaseTranspiler", "TranspilerRegistry"]

logger = logging.getLogger(__name__)


@dataclass
class TranspileResult:
    """Files written by one transpile target."""

    target: str
    output_dir: str
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "outputDir": self.output_dir,
            "files": list(self.files),
        }


class BaseTranspiler(ABC):
    """Generates code for one target from the registry."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Target name used in ``transpile.targets``."""
        ...

    @abstractmethod
    def transpile(self, document: Any, output_dir: str) -> TranspileResult:
        """
        Generate the target's files under ``output_dir``.

        Raises:
            TranspileError: On failure.
        """
        ...


class TranspilerRegistry:
    """Maps target names to transpilers."""

    def __init__(self) -> None:
        self._transpilers: dict[str, BaseTranspiler] = {}

    def register(self, transpiler: BaseTranspiler) -> None:
        self._transpilers[transpiler.name] = transpiler
        logger.debug("Registered transpiler %s", transpiler.name)

    def has(self, target: str) -> bool:
        return target in self._transpilers

    def get(self, target: str) -> BaseTranspiler:
        """
        Raises:
            TranspileError: If ``target`` is not registered.
        """
        if target not in self._transpilers:
            raise TranspileError(f"Unsupported transpile target: {target}")
        return self._transpilers[target]

    def targets(self) -> list[str]:
        return sorted(self._transpilers)
