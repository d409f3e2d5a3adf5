"""
Mutation Applier
~~~~~~~~~~~~~~~~

Applies a MutationPlan to an in-memory registry document and returns
the mutated document together with its UndoPatch. Disk I/O, locking
and backups are the orchestrator's job.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from plyra_registry.core.patch import MutationPlan, UndoPatch, apply_patch

__all__ = ["ApplyResult", "BaseMutationApplier", "MutationApplier"]

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """
    Outcome of applying a plan.

    Attributes:
        document: Mutated document (the input is left untouched).
        applied: Operations that took effect.
        failures: ``{"index", "operation", "error"}`` per failed operation.
        undo: Restores the input document from ``document``.
        duration_ms: Wall-clock time spent applying.
    """

    document: Any
    applied: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    undo: UndoPatch = field(default_factory=UndoPatch)
    duration_ms: int = 0

    @property
    def failed(self) -> int:
        return len(self.failures)


class BaseMutationApplier(ABC):
    """Applies mutation plans; replaceable by an external engine."""

    @abstractmethod
    def apply(self, document: Any, plan: MutationPlan) -> ApplyResult:
        """
        Apply ``plan`` to ``document``.

        Raises:
            PatchApplicationError: When the applier runs all-or-nothing
                and an operation fails.
        """
        ...


class MutationApplier(BaseMutationApplier):
    """
    In-process applier built on ``core.patch``.

    Args:
        all_or_nothing: Fail the whole plan on the first bad operation
            instead of skipping it.
    """

    def __init__(self, all_or_nothing: bool = False) -> None:
        self._all_or_nothing = all_or_nothing

    def apply(self, document: Any, plan: MutationPlan) -> ApplyResult:
        start = time.perf_counter()
        result = apply_patch(document, plan.operations, all_or_nothing=self._all_or_nothing)
        duration_ms = int((time.perf_counter() - start) * 1000)

        for failure in result.failures:
            logger.warning(
                "Operation %d (%s) failed: %s",
                failure["index"] + 1,
                failure["operation"].get("op") if isinstance(failure["operation"], dict) else "?",
                failure["error"],
            )
        logger.debug(
            "Applied %d/%d operations in %dms",
            result.applied,
            len(plan),
            duration_ms,
        )
        return ApplyResult(
            document=result.document,
            applied=result.applied,
            failures=result.failures,
            undo=result.undo,
            duration_ms=duration_ms,
        )
