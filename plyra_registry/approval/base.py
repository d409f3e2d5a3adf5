"""
Base Approval Provider
~~~~~~~~~~~~~~~~~~~~~~

Abstract interface through which the approval gate asks a reviewer
to apply, cancel or save a preview of a planned mutation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from plyra_registry.core.levels import ApprovalChoice, RiskLevel
from plyra_registry.core.patch import MutationPlan

if TYPE_CHECKING:
    from plyra_registry.collaborators.diff import Preview

__all__ = ["BaseApprovalProvider"]


class BaseApprovalProvider(ABC):
    """
    A reviewer the approval gate can consult.

    Subclasses must implement:
        - choose(): Pick apply, cancel or save-preview.
        - confirm(): Answer a yes/no second confirmation.

    Optionally override:
        - save_preview(): Persist the preview; returns where it went.
    """

    @abstractmethod
    def choose(
        self,
        plan: MutationPlan,
        preview: Preview | None,
        risk: RiskLevel,
    ) -> ApprovalChoice:
        """
        Ask the reviewer what to do with the plan.

        Args:
            plan: The planned mutation.
            preview: Rendered preview, when one was produced.
            risk: Effective risk level of the change.

        Returns:
            The reviewer's choice.
        """
        ...

    @abstractmethod
    def confirm(self, message: str) -> bool:
        """Ask a yes/no question; True means yes."""
        ...

    def save_preview(self, preview: Preview) -> str | None:
        """Persist the preview. The default keeps nothing."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
