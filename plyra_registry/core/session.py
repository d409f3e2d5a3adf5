"""
Session Data Models
~~~~~~~~~~~~~~~~~~~

Dataclasses that flow through the mutation pipeline: SessionOptions
(input), Session and its Step records (state), SessionResult (output),
plus the ApprovalDecision and DeployActionResult records produced by
individual steps.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from plyra_registry.core.levels import ApprovalMethod, RiskLevel, StepStatus

__all__ = [
    "STEP_NAMES",
    "new_session_id",
    "SessionOptions",
    "Step",
    "ApprovalDecision",
    "DeployActionResult",
    "SessionResult",
    "Session",
]

STEP_NAMES = (
    "load_context",
    "plan_mutations",
    "preview_changes",
    "get_approval",
    "apply_mutations",
    "transpile",
    "deploy",
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_session_id() -> str:
    """Return ``reg-<epoch-ms>-<5 random chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(5))
    return f"reg-{int(time.time() * 1000)}-{suffix}"


def _iso(ts: datetime) -> str:
    return ts.isoformat().replace("+00:00", "Z")


@dataclass
class SessionOptions:
    """
    Per-session switches.

    Attributes:
        auto_approve: Decide approval from the risk threshold alone.
        interactive: Whether a human can be asked (False forces automatic).
        dry_run: Stop after the preview; nothing is written.
        transpile: Run the transpile step when approved.
        transpile_targets: Transpiler names to run.
        deploy: Run the deploy step when approved.
        enable_git: Commit and tag the change during deploy.
        registry_path: Canonical registry file.
        max_auto_approve_risk: Highest risk approved automatically.
    """

    auto_approve: bool = False
    interactive: bool = True
    dry_run: bool = False
    transpile: bool = True
    transpile_targets: list[str] = field(default_factory=list)
    deploy: bool = True
    enable_git: bool = False
    registry_path: str = "./dist/registry.json"
    max_auto_approve_risk: RiskLevel = RiskLevel.LOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "autoApprove": self.auto_approve,
            "interactive": self.interactive,
            "dryRun": self.dry_run,
            "transpile": self.transpile,
            "transpileTargets": list(self.transpile_targets),
            "deploy": self.deploy,
            "enableGit": self.enable_git,
            "registryPath": self.registry_path,
            "maxAutoApproveRisk": self.max_auto_approve_risk.value,
        }


@dataclass
class Step:
    """
    One pipeline step.

    ``result`` is set when the step completes; ``error`` when it fails.
    """

    name: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    status: StepStatus = StepStatus.RUNNING
    result: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "timestamp": _iso(self.timestamp),
            "status": self.status.value,
            "durationMs": self.duration_ms,
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ApprovalDecision:
    """Outcome of the approval gate."""

    approved: bool
    method: ApprovalMethod
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "approved": self.approved,
            "method": self.method.value,
            "reason": self.reason,
        }


@dataclass
class DeployActionResult:
    """
    Result of one best-effort deploy sub-action.

    Attributes:
        type: ``git_commit``, ``registry_publish`` or ``docs_update``.
        success: The action ran and succeeded.
        skipped: The action did not run (disabled or nothing to do).
        details: Action-specific data (commit hash, published paths...).
        error: Failure message when ``success`` is False.
    """

    type: str
    success: bool = False
    skipped: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "success": self.success,
            "skipped": self.skipped,
            "details": self.details,
            "error": self.error,
        }


@dataclass
class SessionResult:
    """Final summary of a finalized session."""

    success: bool
    session_id: str
    completed_steps: int
    failed_steps: int
    mutations_applied: int
    duration_ms: int
    summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "sessionId": self.session_id,
            "completedSteps": self.completed_steps,
            "failedSteps": self.failed_steps,
            "mutationsApplied": self.mutations_applied,
            "duration": self.duration_ms,
            "summary": self.summary,
        }


@dataclass
class Session:
    """
    A single run of the mutation pipeline.

    Holds the step records plus the artifacts the steps produced. A
    session is finalized exactly once; ``result`` is None until then.
    """

    prompt: str
    options: SessionOptions = field(default_factory=SessionOptions)
    id: str = field(default_factory=new_session_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    steps: list[Step] = field(default_factory=list)
    result: SessionResult | None = None
    error: str | None = None

    # Step artifacts
    plan: Any = None
    preview: Any = None
    approval: ApprovalDecision | None = None
    mutations_applied: int = 0
    mutation_failures: list[dict[str, Any]] = field(default_factory=list)
    backup_path: str | None = None
    undo_path: str | None = None
    deploy_results: list[DeployActionResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def finalized(self) -> bool:
        return self.result is not None

    @property
    def completed_steps(self) -> list[Step]:
        return [s for s in self.steps if s.status == StepStatus.COMPLETED]

    @property
    def failed_steps(self) -> list[Step]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    def get_step(self, name: str) -> Step | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "timestamp": _iso(self.timestamp),
            "options": self.options.to_dict(),
            "steps": [s.to_dict() for s in self.steps],
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }

    def to_log_entry(self) -> dict[str, Any]:
        """Build the session log line for this (finalized) session."""
        plan = self.plan
        metadata = plan.metadata if plan is not None else None
        result = self.result
        return {
            "operation": "session",
            "sessionId": self.id,
            "timestamp": _iso(self.timestamp),
            "prompt": self.prompt,
            "success": result.success if result else False,
            "mutationsApplied": self.mutations_applied,
            "steps": [s.name for s in self.steps],
            "completedSteps": len(self.completed_steps),
            "failedSteps": len(self.failed_steps),
            "duration": result.duration_ms if result else 0,
            "mutations": {
                "planned": len(plan) if plan is not None else 0,
                "applied": self.mutations_applied,
                "failed": len(self.mutation_failures),
                "riskLevel": metadata.risk_level.value if metadata else None,
                "componentsAffected": (
                    list(metadata.components_affected) if metadata else []
                ),
            },
            "approval": self.approval.to_dict() if self.approval else None,
            "backup": {
                "created": self.backup_path is not None,
                "path": self.backup_path,
            },
            "undo": {
                "created": self.undo_path is not None,
                "path": self.undo_path,
            },
            "error": self.error,
        }
