"""
Session Orchestrator
~~~~~~~~~~~~~~~~~~~~

The primary entry point for plyra-registry. Runs a change intent
through the mutation pipeline:

    load_context → plan_mutations → preview_changes → get_approval
        → apply_mutations → transpile → deploy

Steps run strictly in order and the first failure halts the pipeline.
Every session is finalized exactly once and appended to the session
log, whether it succeeded or not.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from plyra_registry.approval.gate import ApprovalGate
from plyra_registry.collaborators.deploy import (
    BaseDeployAction,
    DeployContext,
    DocsUpdateAction,
    GitCommitAction,
    RegistryPublishAction,
)
from plyra_registry.collaborators.diff import BaseDiffRenderer, SummaryDiffRenderer
from plyra_registry.collaborators.planner import BasePlanner
from plyra_registry.collaborators.transpiler import TranspilerRegistry
from plyra_registry.collaborators.validator import BaseValidator, default_validator
from plyra_registry.collaborators.vcs import GitClient, VersionControl
from plyra_registry.config.schema import RegistryConfig
from plyra_registry.core.applier import BaseMutationApplier, MutationApplier
from plyra_registry.core.document import (
    component_names,
    count_tokens,
    fingerprint,
    load_registry,
    registry_lock,
    save_registry,
)
from plyra_registry.core.levels import StepStatus
from plyra_registry.core.session import (
    DeployActionResult,
    Session,
    SessionOptions,
    SessionResult,
    Step,
)
from plyra_registry.exceptions import (
    PatchApplicationError,
    PlannerError,
    RegistryConflictError,
    SessionError,
    SessionFailedError,
    StepFailedError,
)
from plyra_registry.observability.exporters import EXPORTERS
from plyra_registry.observability.session_log import SessionLog
from plyra_registry.rollback.backup_store import BackupStore

__all__ = ["SessionOrchestrator"]

logger = logging.getLogger(__name__)


@dataclass
class _Context:
    """Working state shared between the steps of one session."""

    registry: Any = None
    fingerprint: str | None = None
    mutated: Any = None
    start: float = 0.0


class SessionOrchestrator:
    """
    Runs mutation sessions against the canonical registry.

    All collaborators are injectable; anything left as None is built
    from ``config``. A planner must be supplied since planning lives
    outside this package.
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        planner: BasePlanner | None = None,
        approval_gate: ApprovalGate | None = None,
        applier: BaseMutationApplier | None = None,
        diff_renderer: BaseDiffRenderer | None = None,
        validator: BaseValidator | None = None,
        backup_store: BackupStore | None = None,
        session_log: SessionLog | None = None,
        transpilers: TranspilerRegistry | None = None,
        vcs: VersionControl | None = None,
        deploy_actions: list[BaseDeployAction] | None = None,
    ) -> None:
        self._config = config or RegistryConfig()
        self._planner = planner
        self._gate = approval_gate or ApprovalGate(
            timeout=self._config.approval.timeout_seconds
        )
        self._applier = applier or MutationApplier(
            all_or_nothing=self._config.apply.all_or_nothing
        )
        self._renderer = diff_renderer or SummaryDiffRenderer()
        self._validator = validator or default_validator(
            self._config.validation.schema_path
        )
        self._backups = backup_store or BackupStore(self._config.backup.dir)
        self._log = session_log or SessionLog(self._config.history.file)
        self._transpilers = transpilers or TranspilerRegistry()
        self._vcs = vcs
        self._deploy_actions = deploy_actions

        for name in self._config.history.exporters:
            self._log.add_exporter(EXPORTERS[name]())

    # ── Properties ─────────────────────────────────────────────────

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def session_log(self) -> SessionLog:
        return self._log

    @property
    def transpilers(self) -> TranspilerRegistry:
        return self._transpilers

    def default_options(self, **overrides: Any) -> SessionOptions:
        """SessionOptions from the configuration, with ``overrides`` applied."""
        cfg = self._config
        values: dict[str, Any] = {
            "auto_approve": cfg.approval.auto_approve,
            "interactive": cfg.approval.interactive,
            "transpile": cfg.transpile.enabled,
            "transpile_targets": list(cfg.transpile.targets),
            "deploy": cfg.deploy.enabled,
            "enable_git": cfg.git.enabled,
            "registry_path": cfg.registry.path,
            "max_auto_approve_risk": cfg.approval.max_auto_approve_risk,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return SessionOptions(**values)

    # ── Public API ─────────────────────────────────────────────────

    def execute_intent(
        self,
        prompt: str,
        options: SessionOptions | None = None,
    ) -> Session:
        """
        Run one mutation session.

        Returns:
            The finalized session (completed, dry-run or rejected).

        Raises:
            SessionFailedError: A step failed; the finalized and logged
                session is attached as ``session``.
        """
        session, ctx = self._start(prompt, options)
        try:
            self._prepare(session, ctx)
            if not session.options.dry_run:
                with self._step(session, "get_approval") as step:
                    step.result = self._approve(session)
                self._complete(session, ctx)
        except StepFailedError as exc:
            session.error = str(exc)
        return self._finish(session, ctx)

    async def execute_intent_async(
        self,
        prompt: str,
        options: SessionOptions | None = None,
    ) -> Session:
        """
        Async version of execute_intent.

        Blocking steps run in a worker thread. Approval goes through
        ``ApprovalGate.decide_async``, so an unanswered reviewer
        cancels the session after the configured timeout.
        """
        session, ctx = self._start(prompt, options)
        try:
            await asyncio.to_thread(self._prepare, session, ctx)
            if not session.options.dry_run:
                with self._step(session, "get_approval") as step:
                    decision = await self._gate.decide_async(
                        session.plan, session.options, session.preview
                    )
                    step.result = self._record_approval(session, decision)
                await asyncio.to_thread(self._complete, session, ctx)
        except StepFailedError as exc:
            session.error = str(exc)
        return await asyncio.to_thread(self._finish, session, ctx)

    def get_mutation_history(self, limit: int = 10) -> list[dict[str, Any]]:
        """The ``limit`` most recent sessions, newest first."""
        return self._log.history(limit=limit)

    def get_stats(self) -> dict[str, Any]:
        """Aggregate statistics over every logged session."""
        entries = self._log.entries("session")
        components: set[str] = set()
        mutations = 0
        successful = 0
        for entry in entries:
            mutations += int(entry.get("mutationsApplied") or 0)
            successful += 1 if entry.get("success") else 0
            if entry.get("mutationsApplied"):
                components.update((entry.get("mutations") or {}).get("componentsAffected") or [])
        return {
            "sessionsRun": len(entries),
            "successfulSessions": successful,
            "mutationsApplied": mutations,
            "componentsAffected": sorted(components),
            "lastSession": entries[-1] if entries else None,
        }

    # ── Pipeline phases ────────────────────────────────────────────

    def _start(
        self, prompt: str, options: SessionOptions | None
    ) -> tuple[Session, _Context]:
        session = Session(prompt=prompt, options=options or self.default_options())
        logger.info("Session %s started: %s", session.id, prompt)
        return session, _Context(start=time.perf_counter())

    def _prepare(self, session: Session, ctx: _Context) -> None:
        """load_context, plan_mutations and preview_changes."""
        with self._step(session, "load_context") as step:
            step.result = self._load_context(session, ctx)
        with self._step(session, "plan_mutations") as step:
            step.result = self._plan(session, ctx)
        with self._step(session, "preview_changes") as step:
            step.result = self._preview(session, ctx)

    def _complete(self, session: Session, ctx: _Context) -> None:
        """apply_mutations, transpile and deploy for an approved session."""
        if session.approval is None or not session.approval.approved:
            return
        options = session.options
        with self._step(session, "apply_mutations") as step:
            step.result = self._apply(session, ctx)
        if options.transpile and options.transpile_targets:
            with self._step(session, "transpile") as step:
                step.result = self._transpile(session, ctx)
        if options.deploy:
            with self._step(session, "deploy") as step:
                step.result = self._deploy(session, ctx)

    def _finish(self, session: Session, ctx: _Context) -> Session:
        self._finalize(session, ctx)
        try:
            self._log.append(session.to_log_entry())
        except OSError as exc:
            logger.error("Failed to write session %s to history: %s", session.id, exc)
            session.warnings.append(f"history: {exc}")

        result = session.result
        if result is None or not result.success:
            raise SessionFailedError(
                f"Session {session.id} failed: {session.error}", session=session
            )
        logger.info("Session %s finished: %s", session.id, result.summary)
        return session

    @contextmanager
    def _step(self, session: Session, name: str) -> Iterator[Step]:
        """Record a step; any exception marks it failed and halts the session."""
        step = Step(name=name)
        session.steps.append(step)
        start = time.perf_counter()
        logger.debug("Session %s: %s", session.id, name)
        try:
            yield step
        except Exception as exc:
            step.status = StepStatus.FAILED
            step.error = str(exc)
            step.duration_ms = int((time.perf_counter() - start) * 1000)
            logger.error("Session %s: step %s failed: %s", session.id, name, exc)
            raise StepFailedError(str(exc), step_name=name) from exc
        step.status = StepStatus.COMPLETED
        step.duration_ms = int((time.perf_counter() - start) * 1000)

    def _finalize(self, session: Session, ctx: _Context) -> None:
        if session.finalized:
            raise SessionError(f"Session {session.id} is already finalized")

        failed = session.failed_steps
        if failed:
            summary = f"Failed at {failed[0].name}: {failed[0].error}"
        elif session.options.dry_run:
            summary = f"Dry run: {len(session.plan or [])} change(s) previewed"
        elif session.approval is not None and not session.approval.approved:
            summary = f"Not applied: {session.approval.reason}"
        else:
            summary = f"Applied {session.mutations_applied} mutation(s)"

        session.result = SessionResult(
            success=not failed,
            session_id=session.id,
            completed_steps=len(session.completed_steps),
            failed_steps=len(failed),
            mutations_applied=session.mutations_applied,
            duration_ms=int((time.perf_counter() - ctx.start) * 1000),
            summary=summary,
        )

    # ── Steps ──────────────────────────────────────────────────────

    def _load_context(self, session: Session, ctx: _Context) -> dict[str, Any]:
        path = session.options.registry_path
        ctx.registry = load_registry(path)
        ctx.fingerprint = fingerprint(path)
        return {
            "registryPath": path,
            "components": len(component_names(ctx.registry)),
            "tokens": count_tokens(ctx.registry),
            "fingerprint": ctx.fingerprint,
        }

    def _plan(self, session: Session, ctx: _Context) -> dict[str, Any]:
        if self._planner is None:
            raise PlannerError("No planner configured")
        plan = self._planner.plan(session.prompt, copy.deepcopy(ctx.registry))
        if not plan.operations:
            raise PlannerError("Planner produced no mutations")
        session.plan = plan
        return {
            "mutationCount": len(plan),
            "riskLevel": plan.risk_level.value,
            "componentsAffected": list(plan.metadata.components_affected),
            "plan": plan.to_dict(),
        }

    def _preview(self, session: Session, ctx: _Context) -> dict[str, Any]:
        dry_run = self._applier.apply(ctx.registry, session.plan)
        preview = self._renderer.render(ctx.registry, dry_run.document, session.plan)
        session.preview = preview
        data = preview.to_dict()
        return {
            "summary": data["summary"],
            "diffStats": data["diff"]["stats"],
            "dryRunApplied": dry_run.applied,
            "dryRunFailures": dry_run.failures,
        }

    def _approve(self, session: Session) -> dict[str, Any]:
        decision = self._gate.decide(session.plan, session.options, session.preview)
        return self._record_approval(session, decision)

    @staticmethod
    def _record_approval(session: Session, decision: Any) -> dict[str, Any]:
        session.approval = decision
        logger.info(
            "Session %s %s (%s): %s",
            session.id,
            "approved" if decision.approved else "not approved",
            decision.method.value,
            decision.reason,
        )
        return decision.to_dict()

    def _apply(self, session: Session, ctx: _Context) -> dict[str, Any]:
        cfg = self._config
        path = session.options.registry_path
        warnings: list[str] = []

        with registry_lock(path, cfg.lock.timeout_seconds):
            if fingerprint(path) != ctx.fingerprint:
                raise RegistryConflictError(
                    f"Registry {path} changed since it was loaded; re-run the session"
                )

            result = self._applier.apply(ctx.registry, session.plan)
            session.mutation_failures = result.failures
            if result.applied == 0 and result.failures:
                raise PatchApplicationError(
                    f"None of the {len(session.plan)} mutation(s) could be applied",
                    failures=result.failures,
                )

            if cfg.validation.enabled:
                report = self._validator.validate(result.document)
                if not report.valid:
                    if cfg.validation.mandatory:
                        raise SessionError(
                            "Mutated registry failed validation: " + "; ".join(report.errors)
                        )
                    for error in report.errors:
                        logger.warning("Validation warning: %s", error)
                    warnings.extend(f"validation: {e}" for e in report.errors)

            if cfg.backup.enabled:
                session.backup_path = self._backups.create_backup(path, kind="mutation").path

            save_registry(path, result.document)
            session.mutations_applied = result.applied
            ctx.mutated = result.document

        undo_path = os.path.join(cfg.history.undo_dir, f"{session.id}.json")
        save_registry(undo_path, result.undo.to_list())
        session.undo_path = undo_path

        if cfg.backup.enabled:
            report = self._backups.prune(path, keep=cfg.backup.keep)
            warnings.extend(f"prune: {f['path']}: {f['error']}" for f in report.failed)

        if result.failures:
            warnings.append(f"{len(result.failures)} mutation(s) failed and were skipped")
        session.warnings.extend(warnings)
        logger.info(
            "Session %s applied %d mutation(s) to %s", session.id, result.applied, path
        )
        return {
            "applied": result.applied,
            "failed": len(result.failures),
            "failures": result.failures,
            "backupPath": session.backup_path,
            "undoPath": undo_path,
            "warnings": warnings,
        }

    def _transpile(self, session: Session, ctx: _Context) -> dict[str, Any]:
        results = []
        for target in session.options.transpile_targets:
            transpiler = self._transpilers.get(target)
            output_dir = os.path.join(self._config.transpile.output_dir, target)
            results.append(transpiler.transpile(ctx.mutated, output_dir).to_dict())
            logger.info("Transpiled %s to %s", target, output_dir)
        return {"targets": results}

    def _deploy(self, session: Session, ctx: _Context) -> dict[str, Any]:
        context = DeployContext(
            registry_path=session.options.registry_path,
            document=ctx.mutated,
            history_file=self._log.path,
            undo_path=session.undo_path,
        )

        results: list[DeployActionResult] = []
        for action in self._build_deploy_actions(session.options, results):
            try:
                results.append(action.run(session, context))
            except Exception as exc:
                logger.error("Deploy action %s failed: %s", action.type, exc)
                results.append(
                    DeployActionResult(type=action.type, success=False, error=str(exc))
                )

        session.deploy_results = results
        return {
            "actions": [r.to_dict() for r in results],
            "succeeded": sum(1 for r in results if r.success),
            "failed": sum(1 for r in results if not r.success and not r.skipped),
        }

    def _build_deploy_actions(
        self,
        options: SessionOptions,
        results: list[DeployActionResult],
    ) -> list[BaseDeployAction]:
        if self._deploy_actions is not None:
            return list(self._deploy_actions)

        cfg = self._config
        actions: list[BaseDeployAction] = []
        if options.enable_git:
            vcs = self._vcs or GitClient(timeout=cfg.git.timeout_seconds)
            actions.append(GitCommitAction(vcs, tag=cfg.git.tag, auto_init=cfg.git.auto_init))
        else:
            results.append(
                DeployActionResult(
                    type="git_commit", skipped=True, details={"reason": "git disabled"}
                )
            )
        actions.append(RegistryPublishAction(cfg.deploy.publish_dir))
        actions.append(DocsUpdateAction(cfg.deploy.docs_dir))
        return actions
