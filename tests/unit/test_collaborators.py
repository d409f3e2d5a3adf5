"""Tests for the preview, validation, planning, transpile and deploy collaborators."""

import json
import os
import subprocess

import pytest

from plyra_registry.collaborators.deploy import (
    DeployContext,
    DocsUpdateAction,
    GitCommitAction,
    RegistryPublishAction,
    build_commit_message,
    tag_name,
)
from plyra_registry.collaborators.diff import SummaryDiffRenderer, compute_risk, save_preview
from plyra_registry.collaborators.planner import CallbackPlanner, StaticPlanner
from plyra_registry.collaborators.transpiler import (
    BaseTranspiler,
    TranspileResult,
    TranspilerRegistry,
)
from plyra_registry.collaborators.validator import (
    JsonSchemaValidator,
    StructureValidator,
    default_validator,
)
from plyra_registry.collaborators.vcs import GitClient, VersionControl
from plyra_registry.core.levels import RiskLevel
from plyra_registry.core.patch import MutationPlan, apply_patch
from plyra_registry.core.session import Session
from plyra_registry.exceptions import (
    ConfigError,
    PlannerError,
    TranspileError,
    VersionControlError,
)


class FakeVCS(VersionControl):
    def __init__(self, repo: bool = True) -> None:
        self.repo = repo
        self.calls: list[tuple] = []

    def is_repo(self) -> bool:
        return self.repo

    def init(self) -> None:
        self.calls.append(("init",))
        self.repo = True

    def add(self, paths):
        self.calls.append(("add", list(paths)))

    def commit(self, message):
        self.calls.append(("commit", message))
        return "abc123"

    def tag(self, name, message=""):
        self.calls.append(("tag", name, message))


def _preview(registry, ops):
    plan = MutationPlan.from_dict(ops)
    after = apply_patch(registry, plan.operations).document
    return SummaryDiffRenderer().render(registry, after, plan)


# ── Preview ─────────────────────────────────────────────────────────


class TestComputeRisk:
    def test_removal_is_high(self):
        assert compute_risk({"remove": 1}, 1, 1) == RiskLevel.HIGH

    def test_move_is_high(self):
        assert compute_risk({"move": 1}, 1, 1) == RiskLevel.HIGH

    def test_many_changes_medium(self):
        assert compute_risk({"add": 11}, 11, 1) == RiskLevel.MEDIUM
        assert compute_risk({"add": 6}, 6, 6) == RiskLevel.MEDIUM

    def test_small_additive_low(self):
        assert compute_risk({"add": 2, "replace": 1}, 3, 2) == RiskLevel.LOW


class TestSummaryDiffRenderer:
    def test_additive_change(self, sample_registry, ghost_variant_plan):
        preview = _preview(sample_registry, ghost_variant_plan)
        assert preview.total_changes == 1
        assert preview.by_operation["add"] == 1
        assert preview.components_affected == ["Button"]
        assert preview.risk_level == RiskLevel.LOW
        assert preview.component_changes == [{"type": "modified", "name": "Button"}]
        assert preview.lines_added >= 1

    def test_removed_component(self, sample_registry):
        preview = _preview(sample_registry, [{"op": "remove", "path": "/components/1"}])
        assert preview.risk_level == RiskLevel.HIGH
        assert preview.components_affected == ["Card"]
        assert {"type": "removed", "name": "Card"} in preview.component_changes

    def test_added_component(self, sample_registry):
        preview = _preview(
            sample_registry,
            [{"op": "add", "path": "/components/-", "value": {"name": "Badge"}}],
        )
        assert {"type": "added", "name": "Badge"} in preview.component_changes
        assert preview.components_affected == ["Badge"]

    def test_unresolved_component_index_names_nothing(self, sample_registry):
        plan = MutationPlan.from_dict(
            [{"op": "replace", "path": "/components/9/name", "value": "Ghost"}]
        )
        preview = SummaryDiffRenderer().render(sample_registry, sample_registry, plan)
        assert preview.components_affected == []

    def test_formats(self, sample_registry, ghost_variant_plan):
        preview = _preview(sample_registry, ghost_variant_plan)
        assert "REGISTRY MUTATION PREVIEW" in preview.format("terminal")
        assert preview.format("markdown").startswith("# Registry Mutation Preview")
        data = json.loads(preview.format("json"))
        assert data["summary"]["riskLevel"] == "low"
        with pytest.raises(ValueError):
            preview.format("html")

    def test_save_preview_infers_format(self, sample_registry, ghost_variant_plan, temp_dir):
        preview = _preview(sample_registry, ghost_variant_plan)
        path = save_preview(preview, os.path.join(temp_dir, "out", "preview.json"))
        with open(path) as f:
            assert json.load(f)["summary"]["totalChanges"] == 1
        md = save_preview(preview, os.path.join(temp_dir, "preview.md"))
        with open(md) as f:
            assert "```diff" in f.read()


# ── Validation ──────────────────────────────────────────────────────


class TestValidators:
    def test_structure_valid(self, sample_registry):
        assert StructureValidator().validate(sample_registry).valid

    @pytest.mark.parametrize(
        "document, message",
        [
            ([], "JSON object"),
            ({"components": {}}, "must be an array"),
            ({"components": [1]}, "must be an object"),
            ({"components": [{"name": ""}]}, "missing a name"),
            ({"components": [{"name": "A"}, {"name": "A"}]}, "Duplicate"),
            ({"tokens": []}, "'tokens' must be an object"),
        ],
    )
    def test_structure_errors(self, document, message):
        report = StructureValidator().validate(document)
        assert not report.valid
        assert any(message in e for e in report.errors)

    def test_json_schema(self, sample_registry):
        schema = {
            "type": "object",
            "required": ["components"],
            "properties": {"components": {"type": "array", "maxItems": 1}},
        }
        report = JsonSchemaValidator(schema=schema).validate(sample_registry)
        assert not report.valid
        assert report.errors[0].startswith("components:")

    def test_default_validator_loads_schema(self, temp_dir):
        path = os.path.join(temp_dir, "schema.json")
        with open(path, "w") as f:
            json.dump({"type": "object"}, f)
        assert isinstance(default_validator(path), JsonSchemaValidator)
        assert isinstance(default_validator(None), StructureValidator)

    def test_unreadable_schema(self, temp_dir):
        with pytest.raises(ConfigError):
            JsonSchemaValidator(schema_path=os.path.join(temp_dir, "missing.json"))


# ── Planners ────────────────────────────────────────────────────────


class TestPlanners:
    def test_static_plan(self, sample_registry, ghost_variant_plan):
        plan = StaticPlanner(ghost_variant_plan).plan("add ghost", sample_registry)
        assert len(plan) == 1
        assert plan.risk_level == RiskLevel.LOW

    def test_static_plan_file(self, sample_registry, ghost_variant_plan, temp_dir):
        path = os.path.join(temp_dir, "plan.json")
        with open(path, "w") as f:
            json.dump(ghost_variant_plan, f)
        assert len(StaticPlanner(plan_path=path).plan("x", sample_registry)) == 1

    def test_static_plan_file_missing(self, sample_registry, temp_dir):
        with pytest.raises(PlannerError, match="not found"):
            StaticPlanner(plan_path=os.path.join(temp_dir, "none.json")).plan("x", sample_registry)

    def test_static_plan_invalid(self, sample_registry):
        with pytest.raises(PlannerError):
            StaticPlanner([{"op": "frobnicate", "path": "/a"}]).plan("x", sample_registry)

    def test_static_planner_needs_input(self):
        with pytest.raises(ValueError):
            StaticPlanner()

    def test_callback_planner(self, sample_registry):
        seen = {}

        def plan(prompt, registry):
            seen["prompt"] = prompt
            return [{"op": "remove", "path": "/tokens/spacing"}]

        result = CallbackPlanner(plan).plan("drop spacing", sample_registry)
        assert seen["prompt"] == "drop spacing"
        assert result.operations[0].op == "remove"


# ── Transpilers ─────────────────────────────────────────────────────


class _EchoTranspiler(BaseTranspiler):
    @property
    def name(self) -> str:
        return "echo"

    def transpile(self, document, output_dir):
        return TranspileResult(target=self.name, output_dir=output_dir)


class TestTranspilerRegistry:
    def test_register_and_get(self):
        registry = TranspilerRegistry()
        registry.register(_EchoTranspiler())
        assert registry.has("echo")
        assert registry.targets() == ["echo"]
        assert registry.get("echo").name == "echo"

    def test_unknown_target(self):
        with pytest.raises(TranspileError, match="Unsupported transpile target"):
            TranspilerRegistry().get("svelte")


# ── Deploy ──────────────────────────────────────────────────────────


@pytest.fixture
def applied_session(ghost_variant_plan) -> Session:
    session = Session(prompt="Add ghost variant")
    session.plan = MutationPlan.from_dict(ghost_variant_plan)
    session.mutations_applied = 1
    return session


class TestDeployActions:
    def test_commit_message(self, applied_session):
        message = build_commit_message(applied_session)
        assert message.startswith("feat(registry): Add ghost variant")
        assert f"Session ID: {applied_session.id}" in message
        assert "Components: Button" in message

    def test_git_commit_and_tag(self, applied_session, registry_path, sample_registry):
        vcs = FakeVCS()
        context = DeployContext(registry_path=registry_path, document=sample_registry)
        result = GitCommitAction(vcs).run(applied_session, context)
        assert result.success
        assert result.details["commit"] == "abc123"
        assert result.details["tag"] == tag_name(applied_session.id)
        assert ("add", [registry_path]) in vcs.calls

    def test_git_skips_outside_repo(self, applied_session, registry_path, sample_registry):
        vcs = FakeVCS(repo=False)
        context = DeployContext(registry_path=registry_path, document=sample_registry)
        result = GitCommitAction(vcs).run(applied_session, context)
        assert result.skipped
        assert vcs.calls == []

    def test_git_auto_init(self, applied_session, registry_path, sample_registry):
        vcs = FakeVCS(repo=False)
        context = DeployContext(registry_path=registry_path, document=sample_registry)
        GitCommitAction(vcs, tag=False, auto_init=True).run(applied_session, context)
        assert vcs.calls[0] == ("init",)
        assert not any(call[0] == "tag" for call in vcs.calls)

    def test_publish(self, applied_session, registry_path, sample_registry, temp_dir):
        publish_dir = os.path.join(temp_dir, "public")
        context = DeployContext(registry_path=registry_path, document=sample_registry)
        result = RegistryPublishAction(publish_dir).run(applied_session, context)
        assert result.success
        assert os.path.isfile(os.path.join(publish_dir, "registry.json"))
        assert os.path.isfile(
            os.path.join(publish_dir, "versions", f"{applied_session.id}.json")
        )

    def test_publish_skipped_without_dir(self, applied_session, registry_path, sample_registry):
        context = DeployContext(registry_path=registry_path, document=sample_registry)
        assert RegistryPublishAction(None).run(applied_session, context).skipped

    def test_docs(self, applied_session, registry_path, sample_registry, temp_dir):
        docs_dir = os.path.join(temp_dir, "docs")
        context = DeployContext(registry_path=registry_path, document=sample_registry)
        result = DocsUpdateAction(docs_dir).run(applied_session, context)
        assert result.details["components"] == 2
        with open(result.details["path"]) as f:
            text = f.read()
        assert "## Button" in text
        assert "| `variant` | enum |" in text
        assert "2 components, 3 tokens." in text


# ── Git client ──────────────────────────────────────────────────────


class _Completed:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class TestGitClient:
    def test_commands(self, monkeypatch, temp_dir):
        calls = []

        def fake_run(args, **kwargs):
            calls.append(args)
            if args[1:3] == ["rev-parse", "HEAD"]:
                return _Completed(stdout="deadbeef\n")
            return _Completed()

        monkeypatch.setattr(subprocess, "run", fake_run)
        client = GitClient(temp_dir)
        client.add(["a.json"])
        assert client.commit("msg") == "deadbeef"
        client.tag("registry-mutation-x", "m")
        assert calls[0] == ["git", "add", "--", "a.json"]
        assert ["git", "tag", "-a", "registry-mutation-x", "-m", "m"] in calls

    def test_failure_raises(self, monkeypatch, temp_dir):
        monkeypatch.setattr(
            subprocess, "run", lambda args, **kw: _Completed(returncode=1, stderr="fatal: nope")
        )
        with pytest.raises(VersionControlError, match="fatal: nope"):
            GitClient(temp_dir).commit("msg")

    def test_is_repo_false_on_error(self, monkeypatch, temp_dir):
        def boom(args, **kwargs):
            raise FileNotFoundError("git")

        monkeypatch.setattr(subprocess, "run", boom)
        assert GitClient(temp_dir).is_repo() is False

    def test_add_nothing(self, monkeypatch, temp_dir):
        def fail(args, **kwargs):
            raise AssertionError("should not run")

        monkeypatch.setattr(subprocess, "run", fail)
        GitClient(temp_dir).add([])
