"""
Integration Tests for the Mutation Pipeline
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

End-to-end sessions against a registry on disk: approval outcomes,
backups and undo patches, failure handling, transpile and deploy,
and the session history.
"""

from __future__ import annotations

import json
import os

import pytest

from plyra_registry.approval.gate import ApprovalGate
from plyra_registry.approval.providers import ScriptedApprovalProvider
from plyra_registry.collaborators.deploy import BaseDeployAction
from plyra_registry.collaborators.planner import CallbackPlanner, StaticPlanner
from plyra_registry.collaborators.transpiler import (
    BaseTranspiler,
    TranspileResult,
    TranspilerRegistry,
)
from plyra_registry.collaborators.vcs import VersionControl
from plyra_registry.config.loader import load_config_from_dict
from plyra_registry.core.levels import RiskLevel, StepStatus
from plyra_registry.core.orchestrator import SessionOrchestrator
from plyra_registry.core.session import DeployActionResult
from plyra_registry.exceptions import SessionFailedError
from plyra_registry.rollback.manager import RollbackManager

# ── Helpers ──────────────────────────────────────────────────────


class FakeVCS(VersionControl):
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def is_repo(self) -> bool:
        return True

    def init(self) -> None:
        self.calls.append(("init",))

    def add(self, paths):
        self.calls.append(("add", list(paths)))

    def commit(self, message):
        self.calls.append(("commit", message))
        return "c0ffee"

    def tag(self, name, message=""):
        self.calls.append(("tag", name))


class FileTranspiler(BaseTranspiler):
    """Writes one file per component."""

    @property
    def name(self) -> str:
        return "names"

    def transpile(self, document, output_dir):
        os.makedirs(output_dir, exist_ok=True)
        files = []
        for component in document["components"]:
            path = os.path.join(output_dir, f"{component['name']}.txt")
            with open(path, "w") as f:
                f.write(component["name"])
            files.append(path)
        return TranspileResult(target=self.name, output_dir=output_dir, files=files)


class FailingAction(BaseDeployAction):
    @property
    def type(self) -> str:
        return "broken"

    def run(self, session, context):
        raise RuntimeError("publish endpoint unreachable")


class OkAction(BaseDeployAction):
    @property
    def type(self) -> str:
        return "ok"

    def run(self, session, context):
        return DeployActionResult(type=self.type, success=True)


def read_json(path):
    with open(path) as f:
        return json.load(f)


def _with(config, section, **values):
    """Copy of ``config`` with some values of one section replaced."""
    data = config.model_dump()
    data[section] = {**data[section], **values}
    return load_config_from_dict(data)


def _strict(config):
    return _with(config, "validation", enabled=True, mandatory=True)


@pytest.fixture
def make_orchestrator(config, backup_store, session_log):
    def factory(plan=None, planner=None, cfg=None, **kwargs) -> SessionOrchestrator:
        return SessionOrchestrator(
            cfg or config,
            planner=planner or StaticPlanner(plan),
            backup_store=backup_store,
            session_log=session_log,
            **kwargs,
        )

    return factory


def _steps(session):
    return [(s.name, s.status) for s in session.steps]


# ── Happy path ───────────────────────────────────────────────────


class TestSuccessfulSession:
    def test_auto_approved_session(
        self, make_orchestrator, ghost_variant_plan, registry_path, sample_registry, session_log
    ):
        orch = make_orchestrator(ghost_variant_plan)
        session = orch.execute_intent(
            "Add a ghost variant to Button", orch.default_options(auto_approve=True)
        )

        assert session.result.success
        assert session.result.mutations_applied == 1
        assert [name for name, _ in _steps(session)] == [
            "load_context",
            "plan_mutations",
            "preview_changes",
            "get_approval",
            "apply_mutations",
            "deploy",
        ]
        assert all(status == StepStatus.COMPLETED for _, status in _steps(session))
        assert read_json(registry_path)["components"][0]["props"]["variant"]["values"] == [
            "primary",
            "secondary",
            "ghost",
        ]
        assert read_json(session.backup_path) == sample_registry
        assert read_json(session.undo_path) == [
            {"op": "remove", "path": "/components/0/props/variant/values/2"}
        ]

        entries = session_log.entries("session")
        assert len(entries) == 1
        assert entries[0]["sessionId"] == session.id
        assert entries[0]["approval"]["method"] == "automatic"
        assert entries[0]["undo"]["path"] == session.undo_path

    def test_undo_by_session_id_restores_registry(
        self, make_orchestrator, ghost_variant_plan, config, backup_store, session_log,
        registry_path, sample_registry,
    ):
        orch = make_orchestrator(ghost_variant_plan)
        session = orch.execute_intent("ghost", orch.default_options(auto_approve=True))

        manager = RollbackManager(config, backup_store=backup_store, session_log=session_log)
        result = manager.rollback(registry_path, session.id)

        assert result.method == "undo_patch"
        assert read_json(registry_path) == sample_registry

    def test_last_backup_restores_registry(
        self, make_orchestrator, ghost_variant_plan, config, backup_store, session_log,
        registry_path, sample_registry,
    ):
        orch = make_orchestrator(ghost_variant_plan)
        orch.execute_intent("ghost", orch.default_options(auto_approve=True))

        RollbackManager(config, backup_store=backup_store, session_log=session_log).rollback(
            registry_path, "last"
        )
        assert read_json(registry_path) == sample_registry

    def test_interactive_save_then_apply(
        self, make_orchestrator, ghost_variant_plan, temp_dir, registry_path
    ):
        provider = ScriptedApprovalProvider(
            ["s", "a"], preview_dir=os.path.join(temp_dir, "previews")
        )
        orch = make_orchestrator(ghost_variant_plan, approval_gate=ApprovalGate(provider))
        session = orch.execute_intent("ghost", orch.default_options())

        assert session.approval.approved
        assert session.approval.method.value == "interactive"
        assert len(provider.saved_previews) == 1
        assert os.path.isfile(provider.saved_previews[0])
        assert "ghost" in json.dumps(read_json(registry_path))

    def test_partial_application(self, make_orchestrator, ghost_variant_plan, registry_path):
        plan = {
            "patches": ghost_variant_plan["patches"]
            + [{"op": "replace", "path": "/components/9/name", "value": "X"}],
            "metadata": {"riskLevel": "low"},
        }
        orch = make_orchestrator(plan)
        session = orch.execute_intent("partial", orch.default_options(auto_approve=True))

        assert session.result.success
        assert session.mutations_applied == 1
        assert len(session.mutation_failures) == 1
        assert any("failed and were skipped" in w for w in session.warnings)
        assert len(read_json(session.undo_path)) == 1

    def test_validation_warning_does_not_block(self, make_orchestrator, registry_path):
        plan = {
            "patches": [{"op": "replace", "path": "/components/1/name", "value": ""}],
            "metadata": {"riskLevel": "low"},
        }
        orch = make_orchestrator(plan)
        session = orch.execute_intent("blank name", orch.default_options(auto_approve=True))
        assert session.result.success
        assert any("missing a name" in w for w in session.warnings)
        assert read_json(registry_path)["components"][1]["name"] == ""


# ── Stopping before apply ────────────────────────────────────────


class TestNoWrite:
    def test_dry_run(self, make_orchestrator, ghost_variant_plan, registry_path, sample_registry, backup_store, session_log):
        orch = make_orchestrator(ghost_variant_plan)
        session = orch.execute_intent("ghost", orch.default_options(dry_run=True))

        assert session.result.success
        assert [s.name for s in session.steps] == [
            "load_context",
            "plan_mutations",
            "preview_changes",
        ]
        assert session.preview.total_changes == 1
        assert session.result.summary.startswith("Dry run")
        assert read_json(registry_path) == sample_registry
        assert backup_store.list_backups(registry_path) == []
        assert len(session_log) == 1

    def test_high_risk_rejected(self, make_orchestrator, registry_path, sample_registry, session_log):
        orch = make_orchestrator([{"op": "remove", "path": "/components/1"}])
        session = orch.execute_intent("drop Card", orch.default_options(auto_approve=True))

        assert session.result.success
        assert not session.approval.approved
        assert session.approval.reason == "risk level too high for auto-approval"
        assert session.get_step("apply_mutations") is None
        assert session.result.summary.startswith("Not applied")
        assert read_json(registry_path) == sample_registry
        assert session_log.entries()[0]["approval"]["approved"] is False

    def test_preview_risk_overrides_declared(self, make_orchestrator, registry_path, sample_registry):
        plan = {
            "patches": [{"op": "remove", "path": "/tokens/spacing"}],
            "metadata": {"riskLevel": "low"},
        }
        orch = make_orchestrator(plan)
        session = orch.execute_intent("drop spacing", orch.default_options(auto_approve=True))
        assert not session.approval.approved
        assert read_json(registry_path) == sample_registry

    def test_high_risk_confirmation_declined(self, make_orchestrator, registry_path, sample_registry):
        provider = ScriptedApprovalProvider(["a"], confirmations=[False])
        orch = make_orchestrator(
            [{"op": "remove", "path": "/components/1"}], approval_gate=ApprovalGate(provider)
        )
        session = orch.execute_intent("drop Card", orch.default_options())
        assert session.approval.reason == "User declined high-risk confirmation"
        assert read_json(registry_path) == sample_registry


# ── Failures ─────────────────────────────────────────────────────


class TestFailedSession:
    def test_missing_registry(self, make_orchestrator, ghost_variant_plan, temp_dir, session_log):
        orch = make_orchestrator(ghost_variant_plan)
        missing = os.path.join(temp_dir, "nope", "registry.json")

        with pytest.raises(SessionFailedError) as exc_info:
            orch.execute_intent(
                "ghost", orch.default_options(auto_approve=True, registry_path=missing)
            )

        session = exc_info.value.session
        assert session.finalized
        assert [(s.name, s.status) for s in session.steps] == [
            ("load_context", StepStatus.FAILED)
        ]
        assert not os.path.exists(missing)
        entries = session_log.entries()
        assert len(entries) == 1
        assert entries[0]["success"] is False

    def test_corrupt_registry(self, make_orchestrator, ghost_variant_plan, registry_path):
        with open(registry_path, "w") as f:
            f.write("{broken")
        orch = make_orchestrator(ghost_variant_plan)
        with pytest.raises(SessionFailedError, match="Invalid JSON"):
            orch.execute_intent("ghost", orch.default_options(auto_approve=True))
        with open(registry_path) as f:
            assert f.read() == "{broken"

    def test_no_planner(self, config, backup_store, session_log):
        orch = SessionOrchestrator(config, backup_store=backup_store, session_log=session_log)
        with pytest.raises(SessionFailedError, match="No planner configured"):
            orch.execute_intent("anything", orch.default_options(auto_approve=True))

    def test_empty_plan(self, make_orchestrator):
        orch = make_orchestrator({"patches": []})
        with pytest.raises(SessionFailedError) as exc_info:
            orch.execute_intent("nothing", orch.default_options(auto_approve=True))
        assert exc_info.value.session.failed_steps[0].name == "plan_mutations"

    def test_conflicting_write(self, make_orchestrator, ghost_variant_plan, registry_path, backup_store):
        def planner(prompt, registry):
            # another writer changes the file between load and apply
            with open(registry_path, "w") as f:
                json.dump({"components": []}, f)
            return ghost_variant_plan

        orch = make_orchestrator(planner=CallbackPlanner(planner))
        with pytest.raises(SessionFailedError, match="changed since it was loaded") as exc_info:
            orch.execute_intent("ghost", orch.default_options(auto_approve=True))

        assert exc_info.value.session.failed_steps[0].name == "apply_mutations"
        assert read_json(registry_path) == {"components": []}
        assert backup_store.list_backups(registry_path) == []

    def test_nothing_applicable(self, make_orchestrator, registry_path, sample_registry, backup_store):
        orch = make_orchestrator(
            {
                "patches": [{"op": "replace", "path": "/nope", "value": 1}],
                "metadata": {"riskLevel": "low"},
            }
        )
        with pytest.raises(SessionFailedError, match="could be applied"):
            orch.execute_intent("bad", orch.default_options(auto_approve=True))
        assert read_json(registry_path) == sample_registry
        assert backup_store.list_backups(registry_path) == []

    def test_mandatory_validation(self, make_orchestrator, config, registry_path, sample_registry):
        plan = {
            "patches": [{"op": "replace", "path": "/components/1/name", "value": ""}],
            "metadata": {"riskLevel": "low"},
        }
        orch = make_orchestrator(plan, cfg=_strict(config))
        with pytest.raises(SessionFailedError, match="failed validation"):
            orch.execute_intent("blank", orch.default_options(auto_approve=True))
        assert read_json(registry_path) == sample_registry

    def test_unregistered_transpile_target(self, make_orchestrator, ghost_variant_plan, registry_path):
        orch = make_orchestrator(ghost_variant_plan)
        options = orch.default_options(auto_approve=True, transpile_targets=["svelte"])
        with pytest.raises(SessionFailedError, match="Unsupported transpile target") as exc_info:
            orch.execute_intent("ghost", options)

        session = exc_info.value.session
        assert session.get_step("apply_mutations").status == StepStatus.COMPLETED
        assert session.get_step("transpile").status == StepStatus.FAILED
        assert session.get_step("deploy") is None
        # the mutation stays applied and remains undoable
        assert os.path.isfile(session.undo_path)


# ── Transpile & deploy ───────────────────────────────────────────


class TestTranspileAndDeploy:
    def test_transpile(self, make_orchestrator, ghost_variant_plan, config):
        transpilers = TranspilerRegistry()
        transpilers.register(FileTranspiler())
        orch = make_orchestrator(ghost_variant_plan, transpilers=transpilers)

        session = orch.execute_intent(
            "ghost", orch.default_options(auto_approve=True, transpile_targets=["names"])
        )

        targets = session.get_step("transpile").result["targets"]
        assert targets[0]["target"] == "names"
        assert os.path.isfile(os.path.join(config.transpile.output_dir, "names", "Card.txt"))

    def test_no_transpile_option(self, make_orchestrator, ghost_variant_plan):
        orch = make_orchestrator(ghost_variant_plan)
        session = orch.execute_intent(
            "ghost",
            orch.default_options(auto_approve=True, transpile=False, transpile_targets=["svelte"]),
        )
        assert session.get_step("transpile") is None

    def test_deploy_is_best_effort(self, make_orchestrator, ghost_variant_plan):
        orch = make_orchestrator(ghost_variant_plan, deploy_actions=[FailingAction(), OkAction()])
        session = orch.execute_intent("ghost", orch.default_options(auto_approve=True))

        assert session.result.success
        results = {r.type: r for r in session.deploy_results}
        assert results["broken"].success is False
        assert "unreachable" in results["broken"].error
        assert results["ok"].success
        assert session.get_step("deploy").result["failed"] == 1

    def test_default_actions_without_git(self, make_orchestrator, ghost_variant_plan):
        orch = make_orchestrator(ghost_variant_plan)
        session = orch.execute_intent("ghost", orch.default_options(auto_approve=True))
        results = {r.type: r for r in session.deploy_results}
        assert results["git_commit"].skipped
        assert results["registry_publish"].skipped
        assert results["docs_update"].skipped

    def test_git_commit(self, make_orchestrator, ghost_variant_plan, registry_path, session_log):
        vcs = FakeVCS()
        orch = make_orchestrator(ghost_variant_plan, vcs=vcs)
        session = orch.execute_intent(
            "Add ghost", orch.default_options(auto_approve=True, enable_git=True)
        )

        git = next(r for r in session.deploy_results if r.type == "git_commit")
        assert git.success
        assert git.details["tag"] == f"registry-mutation-{session.id}"
        staged = next(call[1] for call in vcs.calls if call[0] == "add")
        assert registry_path in staged
        assert session.undo_path in staged
        message = next(call[1] for call in vcs.calls if call[0] == "commit")
        assert message.startswith("feat(registry): Add ghost")

    def test_publish_and_docs(self, make_orchestrator, ghost_variant_plan, config, temp_dir):
        cfg = _with(
            config,
            "deploy",
            publish_dir=os.path.join(temp_dir, "public"),
            docs_dir=os.path.join(temp_dir, "docs"),
        )
        orch = make_orchestrator(ghost_variant_plan, cfg=cfg)
        session = orch.execute_intent("ghost", orch.default_options(auto_approve=True))

        published = read_json(os.path.join(temp_dir, "public", "registry.json"))
        assert "ghost" in published["components"][0]["props"]["variant"]["values"]
        assert os.path.isfile(os.path.join(temp_dir, "public", "versions", f"{session.id}.json"))
        assert os.path.isfile(os.path.join(temp_dir, "docs", "components.md"))


# ── History ──────────────────────────────────────────────────────


class TestHistory:
    def test_every_session_logged(self, make_orchestrator, ghost_variant_plan, session_log):
        orch = make_orchestrator(ghost_variant_plan)
        orch.execute_intent("one", orch.default_options(auto_approve=True))
        orch.execute_intent("two", orch.default_options(dry_run=True))
        with pytest.raises(SessionFailedError):
            orch.execute_intent(
                "three", orch.default_options(auto_approve=True, registry_path="/nonexistent/r.json")
            )
        assert len(session_log.entries("session")) == 3

    def test_history_and_stats(self, make_orchestrator, ghost_variant_plan):
        orch = make_orchestrator(ghost_variant_plan)
        first = orch.execute_intent("first", orch.default_options(auto_approve=True))
        second = orch.execute_intent("second", orch.default_options(auto_approve=True))

        history = orch.get_mutation_history(limit=1)
        assert [h["sessionId"] for h in history] == [second.id]

        stats = orch.get_stats()
        assert stats["sessionsRun"] == 2
        assert stats["successfulSessions"] == 2
        assert stats["mutationsApplied"] == 2
        assert stats["componentsAffected"] == ["Button"]
        assert stats["lastSession"]["sessionId"] == second.id
        assert first.id != second.id

    def test_backups_pruned(self, make_orchestrator, ghost_variant_plan, config, registry_path, backup_store):
        cfg = _with(config, "backup", keep=2)
        orch = make_orchestrator(ghost_variant_plan, cfg=cfg)
        for i in range(4):
            orch.execute_intent(f"run {i}", orch.default_options(auto_approve=True))
        assert len(backup_store.list_backups(registry_path)) == 2

    def test_stdout_exporter(self, make_orchestrator, ghost_variant_plan, config, capsys):
        cfg = _with(config, "history", exporters=["stdout"])
        orch = make_orchestrator(ghost_variant_plan, cfg=cfg)
        session = orch.execute_intent("ghost", orch.default_options(dry_run=True))
        line = capsys.readouterr().out.strip().splitlines()[-1]
        assert json.loads(line)["sessionId"] == session.id

    def test_default_options_follow_config(self, make_orchestrator, ghost_variant_plan, config):
        options = make_orchestrator(ghost_variant_plan).default_options(enable_git=None)
        assert options.registry_path == config.registry.path
        assert options.max_auto_approve_risk == RiskLevel.LOW
        assert options.enable_git is False
