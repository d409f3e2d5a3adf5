"""
Diff Preview
~~~~~~~~~~~~

Renders the difference between the registry before and after a dry-run
apply: a change summary with a computed risk level, per-component
changes, and a unified line diff of the pretty-printed JSON.
"""

from __future__ import annotations

import difflib
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from plyra_registry.core.document import component_names
from plyra_registry.core.levels import RiskLevel
from plyra_registry.core.patch import (
    SUPPORTED_OPS,
    MutationPlan,
    PatchOperation,
    parse_pointer,
)
from plyra_registry.exceptions import InvalidPatchError

__all__ = [
    "PREVIEW_FORMATS",
    "Preview",
    "BaseDiffRenderer",
    "SummaryDiffRenderer",
    "compute_risk",
    "save_preview",
]

logger = logging.getLogger(__name__)

PREVIEW_FORMATS = ("terminal", "markdown", "json")

_MAX_DIFF_LINES = 20


def compute_risk(by_operation: dict[str, int], total: int, components: int) -> RiskLevel:
    """Removals and moves are high risk; large batches are medium."""
    if by_operation.get("remove", 0) > 0 or by_operation.get("move", 0) > 0:
        return RiskLevel.HIGH
    if total > 10 or components > 5:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass
class Preview:
    """
    Rendered preview of a mutation.

    Attributes:
        total_changes: Number of planned operations.
        by_operation: Count per op name.
        components_affected: Component names the plan touches.
        risk_level: Risk computed from the change shape.
        component_changes: ``{"type", "name"}`` per added, removed or
            modified component.
        lines_added / lines_removed: Unified diff statistics.
        diff: Unified diff lines.
    """

    total_changes: int = 0
    by_operation: dict[str, int] = field(default_factory=dict)
    components_affected: list[str] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    component_changes: list[dict[str, str]] = field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0
    diff: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {
                "totalChanges": self.total_changes,
                "changeTypes": dict(self.by_operation),
                "componentsAffected": list(self.components_affected),
                "riskLevel": self.risk_level.value,
            },
            "componentChanges": list(self.component_changes),
            "diff": {
                "stats": {
                    "linesAdded": self.lines_added,
                    "linesRemoved": self.lines_removed,
                    "totalLines": len(self.diff),
                },
                "lines": list(self.diff),
            },
        }

    def format(self, fmt: str = "terminal") -> str:
        """Render as ``terminal``, ``markdown`` or ``json``."""
        if fmt == "json":
            return json.dumps(self.to_dict(), indent=2)
        if fmt == "markdown":
            return self._markdown()
        if fmt == "terminal":
            return self._terminal()
        raise ValueError(f"Unknown preview format: {fmt!r}")

    def _terminal(self) -> str:
        out = [
            "",
            "REGISTRY MUTATION PREVIEW",
            "=" * 50,
            f"  Total changes:       {self.total_changes}",
            f"  Components affected: {len(self.components_affected)}",
            f"  Risk level:          {self.risk_level.value.upper()}",
            "",
        ]
        counts = [(op, n) for op, n in self.by_operation.items() if n]
        if counts:
            out.append("  Change types:")
            out.extend(f"    {op.upper()}: {n}" for op, n in counts)
            out.append("")
        if self.component_changes:
            out.append("  Components:")
            out.extend(
                f"    [{c['type']}] {c['name']}" for c in self.component_changes
            )
            out.append("")
        out.append(f"  Lines: +{self.lines_added} -{self.lines_removed}")
        out.append("-" * 50)
        out.extend(self.diff[:_MAX_DIFF_LINES])
        if len(self.diff) > _MAX_DIFF_LINES:
            out.append(f"... ({len(self.diff) - _MAX_DIFF_LINES} more lines)")
        return "\n".join(out)

    def _markdown(self) -> str:
        out = [
            "# Registry Mutation Preview",
            "",
            f"- **Total changes:** {self.total_changes}",
            f"- **Components affected:** {', '.join(self.components_affected) or 'none'}",
            f"- **Risk level:** {self.risk_level.value.upper()}",
            f"- **Lines:** +{self.lines_added} / -{self.lines_removed}",
            "",
        ]
        if self.component_changes:
            out.append("## Components")
            out.append("")
            out.extend(f"- `{c['type']}` {c['name']}" for c in self.component_changes)
            out.append("")
        out.extend(["## Diff", "", "```diff", *self.diff, "```", ""])
        return "\n".join(out)


class BaseDiffRenderer(ABC):
    """Renders a before/after pair of registry documents."""

    @abstractmethod
    def render(self, before: Any, after: Any, plan: MutationPlan) -> Preview:
        """Build the preview for ``plan`` taking ``before`` to ``after``."""
        ...


class SummaryDiffRenderer(BaseDiffRenderer):
    """Default renderer: change summary plus a unified line diff."""

    def __init__(self, context_lines: int = 3) -> None:
        self._context_lines = context_lines

    def render(self, before: Any, after: Any, plan: MutationPlan) -> Preview:
        by_operation = {op: 0 for op in SUPPORTED_OPS}
        affected: list[str] = []
        for op in plan.operations:
            by_operation[op.op] += 1
            for pointer in (op.path, op.from_path):
                if pointer is None:
                    continue
                name = self._component_for(pointer, before, after)
                if name is None and pointer == op.path:
                    name = self._added_component(op)
                if name is not None and name not in affected:
                    affected.append(name)

        before_lines = json.dumps(before, indent=2, sort_keys=True).splitlines()
        after_lines = json.dumps(after, indent=2, sort_keys=True).splitlines()
        diff = list(
            difflib.unified_diff(
                before_lines,
                after_lines,
                fromfile="registry (before)",
                tofile="registry (after)",
                n=self._context_lines,
                lineterm="",
            )
        )
        added = sum(1 for line in diff if line.startswith("+") and not line.startswith("+++"))
        removed = sum(1 for line in diff if line.startswith("-") and not line.startswith("---"))

        total = len(plan.operations)
        return Preview(
            total_changes=total,
            by_operation=by_operation,
            components_affected=affected,
            risk_level=compute_risk(by_operation, total, len(affected)),
            component_changes=self._component_changes(before, after),
            lines_added=added,
            lines_removed=removed,
            diff=diff,
        )

    @staticmethod
    def _component_for(pointer: str, before: Any, after: Any) -> str | None:
        """Resolve ``/components/<i>/...`` to a component name."""
        try:
            tokens = parse_pointer(pointer)
        except InvalidPatchError:
            return None
        if len(tokens) < 2 or tokens[0] != "components":
            return None
        index = tokens[1]
        for document in (before, after):
            components = document.get("components") if isinstance(document, dict) else None
            if isinstance(components, list) and index.isascii() and index.isdigit():
                i = int(index)
                if i < len(components) and isinstance(components[i], dict):
                    name = components[i].get("name")
                    if name:
                        return str(name)
        return None

    @staticmethod
    def _added_component(op: PatchOperation) -> str | None:
        """Name of a component inserted whole, e.g. ``add /components/-``."""
        if op.op not in ("add", "replace") or not isinstance(op.value, dict):
            return None
        try:
            tokens = parse_pointer(op.path)
        except InvalidPatchError:
            return None
        if len(tokens) != 2 or tokens[0] != "components":
            return None
        name = op.value.get("name")
        return str(name) if name else None

    @staticmethod
    def _component_changes(before: Any, after: Any) -> list[dict[str, str]]:
        def by_name(document: Any) -> dict[str, Any]:
            components = document.get("components") if isinstance(document, dict) else None
            if not isinstance(components, list):
                return {}
            return {
                c["name"]: c for c in components if isinstance(c, dict) and "name" in c
            }

        old, new = by_name(before), by_name(after)
        changes: list[dict[str, str]] = []
        for name in component_names(after):
            if name not in old:
                changes.append({"type": "added", "name": name})
            elif old[name] != new[name]:
                changes.append({"type": "modified", "name": name})
        for name in component_names(before):
            if name not in new:
                changes.append({"type": "removed", "name": name})
        return changes


def save_preview(preview: Preview, path: str, fmt: str | None = None) -> str:
    """
    Write the preview to ``path``.

    The format defaults from the extension: ``.json`` and ``.md`` map to
    json and markdown, anything else to terminal text.
    """
    if fmt is None:
        ext = os.path.splitext(path)[1].lower()
        fmt = {".json": "json", ".md": "markdown"}.get(ext, "terminal")
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(preview.format(fmt))
    logger.info("Saved preview to %s", path)
    return path
