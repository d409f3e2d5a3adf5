"""
plyra-registry: reversible mutations for component registries.

plyra-registry turns an intended change to a JSON component registry
into a reviewable, atomically applied and fully reversible edit:

- Ordered JSON-Patch mutation plans with generated undo patches
- Risk-based automatic approval or interactive review
- Timestamped backups with retention
- Rollback from a backup, an undo patch or a session id
- Append-only JSON-Lines session history

Quick Start::

    from plyra_registry import SessionOrchestrator, StaticPlanner

    orchestrator = SessionOrchestrator(
        planner=StaticPlanner(plan_path="plan.json"),
    )
    options = orchestrator.default_options(auto_approve=True)
    session = orchestrator.execute_intent("Add a ghost Button variant", options)
    print(session.result.summary)
"""

from plyra_registry.approval import (
    ApprovalGate,
    BaseApprovalProvider,
    CallbackApprovalProvider,
    ConsoleApprovalProvider,
    ScriptedApprovalProvider,
)
from plyra_registry.collaborators import (
    BasePlanner,
    CallbackPlanner,
    StaticPlanner,
)
from plyra_registry.config import RegistryConfig, load_config
from plyra_registry.core.levels import RiskLevel
from plyra_registry.core.orchestrator import SessionOrchestrator
from plyra_registry.core.patch import (
    MutationPlan,
    PatchOperation,
    UndoPatch,
    apply_patch,
    generate_undo,
)
from plyra_registry.core.session import Session, SessionOptions
from plyra_registry.rollback import BackupStore, RollbackManager

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "SessionOrchestrator",
    "Session",
    "SessionOptions",
    "RollbackManager",
    "BackupStore",
    "ApprovalGate",
    "BaseApprovalProvider",
    "ConsoleApprovalProvider",
    "ScriptedApprovalProvider",
    "CallbackApprovalProvider",
    "BasePlanner",
    "StaticPlanner",
    "CallbackPlanner",
    "MutationPlan",
    "PatchOperation",
    "UndoPatch",
    "apply_patch",
    "generate_undo",
    "RiskLevel",
    "RegistryConfig",
    "load_config",
]
