"""
Planners
~~~~~~~~

A planner turns a change intent into a MutationPlan. Natural-language
planning lives outside this package; the built-in planners replay a
prepared plan or delegate to a callable.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from plyra_registry.core.patch import MutationPlan
from plyra_registry.exceptions import InvalidPatchError, PlannerError

__all__ = ["BasePlanner", "StaticPlanner", "CallbackPlanner"]

logger = logging.getLogger(__name__)


class BasePlanner(ABC):
    """Produces a MutationPlan for an intent against the current registry."""

    @abstractmethod
    def plan(self, prompt: str, registry: Any) -> MutationPlan:
        """
        Plan the mutations for ``prompt``.

        Raises:
            PlannerError: If no plan can be produced.
        """
        ...


class StaticPlanner(BasePlanner):
    """
    Returns a fixed plan regardless of the intent.

    Accepts a ready MutationPlan, its JSON form, or a path to a JSON
    plan file (read on every ``plan`` call).
    """

    def __init__(
        self,
        plan: MutationPlan | dict[str, Any] | list[Any] | None = None,
        plan_path: str | None = None,
    ) -> None:
        if plan is None and plan_path is None:
            raise ValueError("StaticPlanner needs a plan or a plan_path")
        self._plan = plan
        self._plan_path = plan_path

    def plan(self, prompt: str, registry: Any) -> MutationPlan:
        if self._plan_path is not None:
            if not os.path.isfile(self._plan_path):
                raise PlannerError(f"Plan file not found: {self._plan_path}")
            try:
                with open(self._plan_path, encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as exc:
                raise PlannerError(f"Invalid JSON in plan file: {exc}") from exc
        else:
            data = self._plan

        if isinstance(data, MutationPlan):
            return data
        try:
            return MutationPlan.from_dict(data)
        except InvalidPatchError as exc:
            raise PlannerError(f"Invalid mutation plan: {exc}") from exc


class CallbackPlanner(BasePlanner):
    """Delegates planning to ``callback(prompt, registry)``."""

    def __init__(self, callback: Callable[[str, Any], Any]) -> None:
        self._callback = callback

    def plan(self, prompt: str, registry: Any) -> MutationPlan:
        result = self._callback(prompt, registry)
        if isinstance(result, MutationPlan):
            return result
        try:
            return MutationPlan.from_dict(result)
        except InvalidPatchError as exc:
            raise PlannerError(f"Planner returned an invalid plan: {exc}") from exc
