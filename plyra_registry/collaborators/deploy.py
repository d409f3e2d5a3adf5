"""
Deploy Actions
~~~~~~~~~~~~~~

Best-effort follow-ups to an applied mutation. Each action is
independent and reports a DeployActionResult; one action failing
never stops the others.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from plyra_registry.collaborators.vcs import VersionControl
from plyra_registry.core.document import component_names, count_tokens
from plyra_registry.core.session import DeployActionResult, Session
from plyra_registry.exceptions import DeployActionError

__all__ = [
    "DeployContext",
    "BaseDeployAction",
    "GitCommitAction",
    "RegistryPublishAction",
    "DocsUpdateAction",
    "build_commit_message",
    "tag_name",
]

logger = logging.getLogger(__name__)


@dataclass
class DeployContext:
    """Paths and data a deploy action may need."""

    registry_path: str
    document: Any
    history_file: str | None = None
    undo_path: str | None = None


def tag_name(session_id: str) -> str:
    return f"registry-mutation-{session_id}"


def build_commit_message(session: Session) -> str:
    """Commit message embedding the session id, intent and scope."""
    components: list[str] = []
    if session.plan is not None:
        components = list(session.plan.metadata.components_affected)
    return (
        f"feat(registry): {session.prompt}\n\n"
        f"Session ID: {session.id}\n"
        f"Mutations Applied: {session.mutations_applied}\n"
        f"Components: {', '.join(components) or 'none'}\n\n"
        f"Timestamp: {datetime.now(UTC).isoformat()}"
    )


class BaseDeployAction(ABC):
    """One deploy sub-action."""

    @property
    @abstractmethod
    def type(self) -> str:
        """Result tag, e.g. ``git_commit``."""
        ...

    @abstractmethod
    def run(self, session: Session, context: DeployContext) -> DeployActionResult:
        """Run the action; may raise, the caller captures the error."""
        ...


class GitCommitAction(BaseDeployAction):
    """Stage the registry, session log and undo patch; commit and tag."""

    def __init__(
        self,
        vcs: VersionControl,
        tag: bool = True,
        auto_init: bool = False,
    ) -> None:
        self._vcs = vcs
        self._tag = tag
        self._auto_init = auto_init

    @property
    def type(self) -> str:
        return "git_commit"

    def run(self, session: Session, context: DeployContext) -> DeployActionResult:
        if not self._vcs.is_repo():
            if not self._auto_init:
                logger.warning("Not a git repository; skipping commit")
                return DeployActionResult(
                    type=self.type,
                    skipped=True,
                    details={"reason": "not a git repository"},
                )
            self._vcs.init()

        paths = [
            p
            for p in (context.registry_path, context.history_file, context.undo_path)
            if p and os.path.exists(p)
        ]
        self._vcs.add(paths)
        commit = self._vcs.commit(build_commit_message(session))
        details: dict[str, Any] = {"commit": commit, "files": paths}

        if self._tag:
            name = tag_name(session.id)
            self._vcs.tag(name, f"Registry mutation: {session.prompt}")
            details["tag"] = name

        logger.info("Committed registry change %s", commit)
        return DeployActionResult(type=self.type, success=True, details=details)


class RegistryPublishAction(BaseDeployAction):
    """
    Copy the registry into a static publish directory.

    Writes ``<publish_dir>/registry.json`` plus an immutable
    ``<publish_dir>/versions/<session_id>.json``.
    """

    def __init__(self, publish_dir: str | None) -> None:
        self._publish_dir = publish_dir

    @property
    def type(self) -> str:
        return "registry_publish"

    def run(self, session: Session, context: DeployContext) -> DeployActionResult:
        if not self._publish_dir:
            return DeployActionResult(
                type=self.type,
                skipped=True,
                details={"reason": "no publish directory configured"},
            )
        if not os.path.isfile(context.registry_path):
            raise DeployActionError(f"Registry {context.registry_path} does not exist")
        versions = os.path.join(self._publish_dir, "versions")
        os.makedirs(versions, exist_ok=True)
        latest = os.path.join(self._publish_dir, "registry.json")
        versioned = os.path.join(versions, f"{session.id}.json")
        shutil.copy2(context.registry_path, latest)
        shutil.copy2(context.registry_path, versioned)
        logger.info("Published registry to %s", self._publish_dir)
        return DeployActionResult(
            type=self.type,
            success=True,
            details={"latest": latest, "versioned": versioned},
        )


class DocsUpdateAction(BaseDeployAction):
    """Regenerate ``components.md``, a markdown index of the registry."""

    def __init__(self, docs_dir: str | None) -> None:
        self._docs_dir = docs_dir

    @property
    def type(self) -> str:
        return "docs_update"

    def run(self, session: Session, context: DeployContext) -> DeployActionResult:
        if not self._docs_dir:
            return DeployActionResult(
                type=self.type,
                skipped=True,
                details={"reason": "no docs directory configured"},
            )
        document = context.document
        names = component_names(document)
        lines = [
            "# Component Registry",
            "",
            f"{len(names)} components, {count_tokens(document)} tokens.",
            "",
        ]
        for component in document.get("components", []):
            if not isinstance(component, dict) or "name" not in component:
                continue
            lines.append(f"## {component['name']}")
            lines.append("")
            if component.get("description"):
                lines.append(str(component["description"]))
                lines.append("")
            props = component.get("props")
            if isinstance(props, dict) and props:
                lines.append("| Prop | Type |")
                lines.append("| --- | --- |")
                for prop, spec in props.items():
                    kind = spec.get("type", "") if isinstance(spec, dict) else ""
                    lines.append(f"| `{prop}` | {kind} |")
                lines.append("")

        os.makedirs(self._docs_dir, exist_ok=True)
        path = os.path.join(self._docs_dir, "components.md")
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))
        return DeployActionResult(
            type=self.type,
            success=True,
            details={"path": path, "components": len(names)},
        )
