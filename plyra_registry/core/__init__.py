"""Core data models, the patch engine and registry document I/O."""

from plyra_registry.core.levels import (
    ApprovalChoice,
    ApprovalMethod,
    RiskLevel,
    StepStatus,
)
from plyra_registry.core.patch import (
    MutationPlan,
    PatchOperation,
    PatchResult,
    PlanMetadata,
    UndoPatch,
    apply_patch,
    generate_undo,
    load_undo_patch,
)
from plyra_registry.core.session import (
    ApprovalDecision,
    DeployActionResult,
    Session,
    SessionOptions,
    SessionResult,
    Step,
)

__all__ = [
    "ApprovalChoice",
    "ApprovalMethod",
    "RiskLevel",
    "StepStatus",
    "MutationPlan",
    "PatchOperation",
    "PatchResult",
    "PlanMetadata",
    "UndoPatch",
    "apply_patch",
    "generate_undo",
    "load_undo_patch",
    "ApprovalDecision",
    "DeployActionResult",
    "Session",
    "SessionOptions",
    "SessionResult",
    "Step",
]
