"""
Configuration Schema
~~~~~~~~~~~~~~~~~~~~

Pydantic models for validating plyra-registry configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from plyra_registry.core.levels import RiskLevel

__all__ = [
    "RegistryConfig",
    "RegistrySection",
    "BackupConfig",
    "HistoryConfig",
    "ApprovalConfig",
    "ApplyConfig",
    "ValidationConfig",
    "TranspileConfig",
    "DeployConfig",
    "GitConfig",
    "LockConfig",
]


class RegistrySection(BaseModel):
    """Location of the canonical registry."""

    path: str = "./dist/registry.json"


class BackupConfig(BaseModel):
    """Backup store settings."""

    enabled: bool = True
    dir: str = "./.registry-backups"
    keep: int = Field(default=10, ge=1)


class HistoryConfig(BaseModel):
    """Session log and undo patch locations."""

    file: str = "./mutations.log.jsonl"
    undo_dir: str = "./.registry-undo"
    exporters: list[str] = Field(default_factory=list)

    @field_validator("exporters")
    @classmethod
    def validate_exporters(cls, v: list[str]) -> list[str]:
        """Only the stdout exporter ships with the package."""
        unknown = [name for name in v if name != "stdout"]
        if unknown:
            raise ValueError(f"Unknown exporters: {unknown!r}")
        return v


class ApprovalConfig(BaseModel):
    """Approval gate settings."""

    auto_approve: bool = False
    interactive: bool = True
    max_auto_approve_risk: RiskLevel = RiskLevel.LOW
    timeout_seconds: float = Field(default=300.0, gt=0.0)

    @field_validator("max_auto_approve_risk", mode="before")
    @classmethod
    def validate_risk(cls, v: object) -> object:
        """Accept risk levels case-insensitively."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class ApplyConfig(BaseModel):
    """Patch application settings."""

    all_or_nothing: bool = False


class ValidationConfig(BaseModel):
    """Post-change validation settings."""

    enabled: bool = True
    mandatory: bool = False
    schema_path: str | None = None


class TranspileConfig(BaseModel):
    """Transpile step settings."""

    enabled: bool = True
    targets: list[str] = Field(default_factory=list)
    output_dir: str = "./dist/transpiled"


class DeployConfig(BaseModel):
    """Deploy step settings."""

    enabled: bool = True
    publish_dir: str | None = None
    docs_dir: str | None = None


class GitConfig(BaseModel):
    """Version control settings."""

    enabled: bool = False
    auto_init: bool = False
    tag: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0.0)


class LockConfig(BaseModel):
    """Advisory registry lock settings."""

    timeout_seconds: float = Field(default=30.0, ge=0.0)


class RegistryConfig(BaseModel):
    """
    Root configuration model for plyra-registry.

    Validated on load with clear error messages for invalid values.
    """

    version: str = "1.0"
    registry: RegistrySection = Field(default_factory=RegistrySection)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    apply: ApplyConfig = Field(default_factory=ApplyConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    transpile: TranspileConfig = Field(default_factory=TranspileConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    lock: LockConfig = Field(default_factory=LockConfig)

    model_config = {"populate_by_name": True}
