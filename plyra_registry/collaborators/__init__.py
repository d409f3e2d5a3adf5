"""
Pipeline collaborators: planners, diff rendering, validation, version
control, transpilers and deploy actions.
"""

from plyra_registry.collaborators.deploy import (
    BaseDeployAction,
    DeployContext,
    DocsUpdateAction,
    GitCommitAction,
    RegistryPublishAction,
)
from plyra_registry.collaborators.diff import (
    BaseDiffRenderer,
    Preview,
    SummaryDiffRenderer,
    save_preview,
)
from plyra_registry.collaborators.planner import (
    BasePlanner,
    CallbackPlanner,
    StaticPlanner,
)
from plyra_registry.collaborators.transpiler import (
    BaseTranspiler,
    TranspileResult,
    TranspilerRegistry,
)
from plyra_registry.collaborators.validator import (
    BaseValidator,
    JsonSchemaValidator,
    StructureValidator,
    ValidationReport,
)
from plyra_registry.collaborators.vcs import GitClient, VersionControl

__all__ = [
    "BasePlanner",
    "StaticPlanner",
    "CallbackPlanner",
    "BaseDiffRenderer",
    "SummaryDiffRenderer",
    "Preview",
    "save_preview",
    "BaseValidator",
    "StructureValidator",
    "JsonSchemaValidator",
    "ValidationReport",
    "VersionControl",
    "GitClient",
    "BaseTranspiler",
    "TranspileResult",
    "TranspilerRegistry",
    "BaseDeployAction",
    "DeployContext",
    "GitCommitAction",
    "RegistryPublishAction",
    "DocsUpdateAction",
]
