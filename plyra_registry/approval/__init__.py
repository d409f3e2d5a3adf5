"""Approval gate and reviewer providers."""

from plyra_registry.approval.base import BaseApprovalProvider
from plyra_registry.approval.gate import ApprovalGate
from plyra_registry.approval.providers import (
    CallbackApprovalProvider,
    ConsoleApprovalProvider,
    ScriptedApprovalProvider,
)

__all__ = [
    "ApprovalGate",
    "BaseApprovalProvider",
    "ConsoleApprovalProvider",
    "ScriptedApprovalProvider",
    "CallbackApprovalProvider",
]
