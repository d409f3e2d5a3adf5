"""
Patch Operations & Undo Patches
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

JSON-Patch style operations over the registry document, the engine
that applies them in order, and the structural inverse (UndoPatch)
that restores the document afterwards.

Every inverse is recorded against the engine's private working copy
as it stands immediately before the operation runs, so the undo
record is independent of whatever the caller does to its own copy of
the document and stays exact when later operations depend on earlier
ones (e.g. two inserts into the same array).
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from plyra_registry.core.levels import RiskLevel
from plyra_registry.exceptions import (
    InvalidPatchError,
    PatchApplicationError,
    PatchError,
    UndoPatchFormatError,
)

__all__ = [
    "SUPPORTED_OPS",
    "PatchOperation",
    "PlanMetadata",
    "MutationPlan",
    "UndoPatch",
    "PatchResult",
    "apply_patch",
    "generate_undo",
    "parse_pointer",
    "build_pointer",
    "resolve_pointer",
    "parse_undo_patch",
    "load_undo_patch",
]

logger = logging.getLogger(__name__)

SUPPORTED_OPS = ("add", "remove", "replace", "move", "copy", "test")


class _Missing:
    """Sentinel for an operation that carries no ``value``."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<missing>"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


# ── JSON Pointer ─────────────────────────────────────────────────


def parse_pointer(path: str) -> list[str]:
    """Split a JSON Pointer into unescaped reference tokens."""
    if path == "":
        return []
    if not path.startswith("/"):
        raise InvalidPatchError(f"JSON pointer must start with '/': {path!r}")
    return [
        token.replace("~1", "/").replace("~0", "~") for token in path[1:].split("/")
    ]


def build_pointer(tokens: Iterable[str | int]) -> str:
    """Join reference tokens back into an escaped JSON Pointer."""
    parts = [str(t).replace("~", "~0").replace("/", "~1") for t in tokens]
    return "".join(f"/{p}" for p in parts)


def _array_index(token: str, array: list[Any], allow_end: bool) -> int:
    """Resolve an array reference token to a concrete index."""
    if token == "-":
        if allow_end:
            return len(array)
        raise PatchApplicationError("'-' is only valid as the target of an add")
    if not (token.isascii() and token.isdigit()) or (len(token) > 1 and token.startswith("0")):
        raise PatchApplicationError(f"Invalid array index: {token!r}")
    index = int(token)
    upper = len(array) if allow_end else len(array) - 1
    if index > upper:
        raise PatchApplicationError(
            f"Array index {index} out of range (length {len(array)})"
        )
    return index


def _child(container: Any, token: str) -> Any:
    if isinstance(container, dict):
        if token not in container:
            raise PatchApplicationError(f"Path segment {token!r} does not exist")
        return container[token]
    if isinstance(container, list):
        return container[_array_index(token, container, allow_end=False)]
    raise PatchApplicationError(
        f"Cannot traverse into {type(container).__name__} at {token!r}"
    )


def resolve_pointer(document: Any, path: str) -> Any:
    """Return the value at ``path``; raises PatchApplicationError if absent."""
    current = document
    for token in parse_pointer(path):
        current = _child(current, token)
    return current


def _parent(document: Any, tokens: list[str]) -> tuple[Any, str]:
    current = document
    for token in tokens[:-1]:
        current = _child(current, token)
    return current, tokens[-1]


# ── Data Models ──────────────────────────────────────────────────


@dataclass(frozen=True)
class PatchOperation:
    """
    A single atomic change to the registry document.

    Attributes:
        op: One of ``add``, ``remove``, ``replace``, ``move``, ``copy``,
            ``test``.
        path: JSON Pointer to the target location.
        value: Payload for ``add``/``replace``/``test``.
        from_path: Source pointer for ``move``/``copy``.
    """

    op: str
    path: str
    value: Any = MISSING
    from_path: str | None = None

    def __post_init__(self) -> None:
        if self.op not in SUPPORTED_OPS:
            raise InvalidPatchError(f"Unsupported patch op: {self.op!r}")
        if not isinstance(self.path, str):
            raise InvalidPatchError(f"Patch path must be a string: {self.path!r}")
        parse_pointer(self.path)
        if self.op in ("add", "replace", "test") and self.value is MISSING:
            raise InvalidPatchError(f"'{self.op}' at {self.path!r} requires a value")
        if self.op in ("move", "copy"):
            if not isinstance(self.from_path, str):
                raise InvalidPatchError(f"'{self.op}' at {self.path!r} requires 'from'")
            parse_pointer(self.from_path)

    @classmethod
    def from_dict(cls, data: Any) -> PatchOperation:
        """Build an operation from its JSON form."""
        if isinstance(data, PatchOperation):
            return data
        if not isinstance(data, dict):
            raise InvalidPatchError(f"Invalid patch structure: {data!r}")
        return cls(
            op=data.get("op", ""),
            path=data.get("path"),  # type: ignore[arg-type]
            value=data.get("value", MISSING),
            from_path=data.get("from"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON-Patch wire form."""
        data: dict[str, Any] = {"op": self.op, "path": self.path}
        if self.from_path is not None:
            data["from"] = self.from_path
        if self.value is not MISSING:
            data["value"] = self.value
        return data

    def __str__(self) -> str:
        return f"{self.op} {self.path}"


@dataclass
class PlanMetadata:
    """Risk metadata the planner attaches to a MutationPlan."""

    risk_level: RiskLevel = RiskLevel.HIGH
    components_affected: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "riskLevel": self.risk_level.value,
            "componentsAffected": list(self.components_affected),
        }


@dataclass
class MutationPlan:
    """
    Ordered patch operations plus risk metadata.

    Operations apply in sequence against the evolving document.
    """

    operations: list[PatchOperation] = field(default_factory=list)
    metadata: PlanMetadata = field(default_factory=PlanMetadata)

    @classmethod
    def from_dict(cls, data: Any) -> MutationPlan:
        """
        Build a plan from a JSON list of operations or an envelope
        ``{"patches"|"mutations": [...], "metadata": {...}}``.
        """
        if isinstance(data, list):
            raw_ops, raw_meta = data, {}
        elif isinstance(data, dict):
            raw_ops = data.get("patches", data.get("mutations"))
            raw_meta = data.get("metadata") or {}
            if not isinstance(raw_ops, list):
                raise InvalidPatchError(
                    "Mutation plan must contain a 'patches' or 'mutations' list"
                )
        else:
            raise InvalidPatchError(f"Invalid mutation plan: {type(data).__name__}")

        operations = [PatchOperation.from_dict(op) for op in raw_ops]
        extra = {
            k: v
            for k, v in raw_meta.items()
            if k not in ("riskLevel", "componentsAffected")
        }
        metadata = PlanMetadata(
            risk_level=RiskLevel.parse(raw_meta.get("riskLevel")),
            components_affected=list(raw_meta.get("componentsAffected") or []),
            extra=extra,
        )
        return cls(operations=operations, metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "patches": [op.to_dict() for op in self.operations],
            "metadata": self.metadata.to_dict(),
        }

    @property
    def risk_level(self) -> RiskLevel:
        return self.metadata.risk_level

    def __len__(self) -> int:
        return len(self.operations)


@dataclass
class UndoPatch:
    """Operation sequence that restores the pre-mutation document."""

    operations: list[PatchOperation] = field(default_factory=list)

    def to_list(self) -> list[dict[str, Any]]:
        return [op.to_dict() for op in self.operations]

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[PatchOperation]:
        return iter(self.operations)


@dataclass
class PatchResult:
    """
    Outcome of applying a batch of operations.

    Attributes:
        document: The resulting document (the input is never modified).
        applied: Number of operations that took effect.
        failures: ``{"index", "operation", "error"}`` per failed operation.
        undo: Inverse of the operations that succeeded.
    """

    document: Any
    applied: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    undo: UndoPatch = field(default_factory=UndoPatch)

    @property
    def failed(self) -> int:
        return len(self.failures)


# ── Engine ───────────────────────────────────────────────────────


def _add(doc: Any, tokens: list[str], value: Any) -> tuple[Any, list[PatchOperation]]:
    value = copy.deepcopy(value)
    if not tokens:
        return value, [PatchOperation("replace", "", doc)]
    parent, key = _parent(doc, tokens)
    if isinstance(parent, dict):
        path = build_pointer(tokens)
        if key in parent:
            old = parent[key]
            parent[key] = value
            return doc, [PatchOperation("replace", path, old)]
        parent[key] = value
        return doc, [PatchOperation("remove", path)]
    if isinstance(parent, list):
        index = _array_index(key, parent, allow_end=True)
        parent.insert(index, value)
        return doc, [PatchOperation("remove", build_pointer([*tokens[:-1], index]))]
    raise PatchApplicationError(f"Cannot add into {type(parent).__name__}")


def _remove(doc: Any, tokens: list[str]) -> tuple[Any, list[PatchOperation]]:
    if not tokens:
        raise PatchApplicationError("Cannot remove the document root")
    parent, key = _parent(doc, tokens)
    if isinstance(parent, dict):
        if key not in parent:
            raise PatchApplicationError(f"Path {build_pointer(tokens)} does not exist")
        old = parent.pop(key)
        return doc, [PatchOperation("add", build_pointer(tokens), old)]
    if isinstance(parent, list):
        index = _array_index(key, parent, allow_end=False)
        old = parent.pop(index)
        return doc, [PatchOperation("add", build_pointer([*tokens[:-1], index]), old)]
    raise PatchApplicationError(f"Cannot remove from {type(parent).__name__}")


def _replace(doc: Any, tokens: list[str], value: Any) -> tuple[Any, list[PatchOperation]]:
    value = copy.deepcopy(value)
    if not tokens:
        return value, [PatchOperation("replace", "", doc)]
    parent, key = _parent(doc, tokens)
    if isinstance(parent, dict):
        if key not in parent:
            raise PatchApplicationError(f"Path {build_pointer(tokens)} does not exist")
        old = parent[key]
        parent[key] = value
        return doc, [PatchOperation("replace", build_pointer(tokens), old)]
    if isinstance(parent, list):
        index = _array_index(key, parent, allow_end=False)
        old = parent[index]
        parent[index] = value
        return doc, [
            PatchOperation("replace", build_pointer([*tokens[:-1], index]), old)
        ]
    raise PatchApplicationError(f"Cannot replace inside {type(parent).__name__}")


def _apply_one(doc: Any, op: PatchOperation) -> tuple[Any, list[PatchOperation]]:
    """Apply a single operation; returns the new document and its inverse."""
    tokens = parse_pointer(op.path)

    if op.op == "add":
        return _add(doc, tokens, op.value)
    if op.op == "remove":
        return _remove(doc, tokens)
    if op.op == "replace":
        return _replace(doc, tokens, op.value)
    if op.op == "test":
        actual = resolve_pointer(doc, op.path)
        if actual != op.value:
            raise PatchApplicationError(f"Test failed at {op.path}")
        return doc, []
    if op.op == "copy":
        value = resolve_pointer(doc, op.from_path or "")
        return _add(doc, tokens, value)

    # move = remove(from) then add(path); restore the source if the add fails
    from_tokens = parse_pointer(op.from_path or "")
    if from_tokens == tokens:
        return doc, []
    if tokens[: len(from_tokens)] == from_tokens:
        raise PatchApplicationError(
            f"Cannot move {op.from_path} into its own child {op.path}"
        )
    value = resolve_pointer(doc, op.from_path or "")
    doc, undo_remove = _remove(doc, from_tokens)
    try:
        doc, undo_add = _add(doc, tokens, value)
    except PatchError:
        doc, _ = _apply_one(doc, undo_remove[0])
        raise
    return doc, undo_add + undo_remove


def apply_patch(
    document: Any,
    operations: Iterable[PatchOperation | dict[str, Any]],
    all_or_nothing: bool = False,
) -> PatchResult:
    """
    Apply operations strictly in order to a copy of ``document``.

    Args:
        document: The source document; never modified.
        operations: PatchOperations or their JSON form.
        all_or_nothing: Raise on the first failed operation instead of
            recording it and continuing.

    Returns:
        PatchResult with the new document, counts, failures and the
        UndoPatch for the operations that succeeded.

    Raises:
        PatchApplicationError: In all-or-nothing mode, on first failure.
    """
    working = copy.deepcopy(document)
    inverses: list[list[PatchOperation]] = []
    failures: list[dict[str, Any]] = []

    for index, raw in enumerate(operations):
        raw_dict = raw.to_dict() if isinstance(raw, PatchOperation) else raw
        try:
            op = PatchOperation.from_dict(raw)
            working, inverse = _apply_one(working, op)
        except PatchError as exc:
            failure = {"index": index, "operation": raw_dict, "error": str(exc)}
            if all_or_nothing:
                raise PatchApplicationError(
                    f"Operation {index + 1} failed: {exc}", failures=[failure]
                ) from exc
            logger.debug("Patch operation %d failed: %s", index + 1, exc)
            failures.append(failure)
            continue
        inverses.append(inverse)

    undo_ops = [op for inverse in reversed(inverses) for op in inverse]
    return PatchResult(
        document=working,
        applied=len(inverses),
        failures=failures,
        undo=UndoPatch(undo_ops),
    )


def generate_undo(
    operations: Iterable[PatchOperation | dict[str, Any]],
    original: Any,
) -> UndoPatch:
    """
    Compute the UndoPatch for ``operations`` against ``original``.

    Prior values are captured from a private copy of ``original`` before
    anything is applied to the caller's document. Operations that would
    fail are left out of the undo patch.
    """
    return apply_patch(original, operations).undo


def parse_undo_patch(data: Any) -> list[PatchOperation]:
    """
    Accept the undo patch layouts the tooling has written over time:
    a bare list, ``{"patches": [...]}`` or ``{"undoPatches": [...]}``.
    """
    if isinstance(data, list):
        raw = data
    elif isinstance(data, dict) and isinstance(data.get("patches"), list):
        raw = data["patches"]
    elif isinstance(data, dict) and isinstance(data.get("undoPatches"), list):
        raw = data["undoPatches"]
    else:
        raise UndoPatchFormatError("Invalid undo patch file format")
    try:
        return [PatchOperation.from_dict(op) for op in raw]
    except InvalidPatchError as exc:
        raise UndoPatchFormatError(f"Invalid undo patch operation: {exc}") from exc


def load_undo_patch(path: str) -> UndoPatch:
    """
    Read an undo patch file written by a previous session.

    Raises:
        UndoPatchFormatError: If the file is unreadable, not JSON, or
            not one of the accepted layouts.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise UndoPatchFormatError(f"Cannot read undo patch {path}: {exc}") from exc
    return UndoPatch(parse_undo_patch(data))
