"""
Approval Providers
~~~~~~~~~~~~~~~~~~

Built-in reviewers: an interactive console prompt, a scripted provider
for automation and tests, and a callback wrapper.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from plyra_registry.approval.base import BaseApprovalProvider
from plyra_registry.collaborators.diff import save_preview
from plyra_registry.core.levels import ApprovalChoice, RiskLevel
from plyra_registry.core.patch import MutationPlan
from plyra_registry.exceptions import ApprovalError

if TYPE_CHECKING:
    from plyra_registry.collaborators.diff import Preview

__all__ = [
    "ConsoleApprovalProvider",
    "ScriptedApprovalProvider",
    "CallbackApprovalProvider",
]

logger = logging.getLogger(__name__)

_CHOICE_KEYS = {
    "a": ApprovalChoice.APPLY,
    "apply": ApprovalChoice.APPLY,
    "c": ApprovalChoice.CANCEL,
    "cancel": ApprovalChoice.CANCEL,
    "s": ApprovalChoice.SAVE_PREVIEW,
    "save": ApprovalChoice.SAVE_PREVIEW,
    "save_preview": ApprovalChoice.SAVE_PREVIEW,
}


def _coerce_choice(value: Any) -> ApprovalChoice:
    if isinstance(value, ApprovalChoice):
        return value
    if isinstance(value, bool):
        return ApprovalChoice.APPLY if value else ApprovalChoice.CANCEL
    if isinstance(value, str) and value.strip().lower() in _CHOICE_KEYS:
        return _CHOICE_KEYS[value.strip().lower()]
    raise ApprovalError(f"Unrecognized approval choice: {value!r}")


def _default_preview_path() -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"./registry-preview-{stamp}.md"


class ConsoleApprovalProvider(BaseApprovalProvider):
    """
    Prompts on the terminal.

    Args:
        input_fn: Reads one line of input (``input`` by default).
        stream: Where prompts and the preview are written.
        preview_path: Callable returning the path for saved previews.
    """

    def __init__(
        self,
        input_fn: Callable[[str], str] | None = None,
        stream: Any = None,
        preview_path: Callable[[], str] | None = None,
    ) -> None:
        self._input = input_fn or input
        self._stream = stream or sys.stdout
        self._preview_path = preview_path or _default_preview_path

    def choose(
        self,
        plan: MutationPlan,
        preview: Preview | None,
        risk: RiskLevel,
    ) -> ApprovalChoice:
        if preview is not None:
            self._stream.write(preview.format("terminal") + "\n")
        self._stream.write(
            f"\n{len(plan)} change(s), risk {risk.value.upper()}.\n"
            "  [a] Apply changes\n"
            "  [c] Cancel\n"
            "  [s] Save preview to file\n"
        )
        while True:
            answer = self._input("How would you like to proceed? ").strip().lower()
            if answer in _CHOICE_KEYS:
                return _CHOICE_KEYS[answer]
            self._stream.write("Please answer a, c or s.\n")

    def confirm(self, message: str) -> bool:
        answer = self._input(f"{message} [y/N] ").strip().lower()
        return answer in ("y", "yes")

    def save_preview(self, preview: Preview) -> str | None:
        path = save_preview(preview, self._preview_path())
        self._stream.write(f"Preview saved to {path}\n")
        return path


class ScriptedApprovalProvider(BaseApprovalProvider):
    """
    Replays pre-recorded answers.

    Running out of answers raises ApprovalError, which the gate turns
    into a rejection.

    Args:
        choices: Answers for ``choose`` (ApprovalChoice, ``"a"``/``"apply"``...).
        confirmations: Answers for ``confirm``.
        preview_dir: Where ``save_preview`` writes, if anywhere.
    """

    def __init__(
        self,
        choices: Iterable[Any] = (),
        confirmations: Iterable[bool] = (),
        preview_dir: str | None = None,
    ) -> None:
        self._choices = [_coerce_choice(c) for c in choices]
        self._confirmations = list(confirmations)
        self._preview_dir = preview_dir
        self.saved_previews: list[str] = []
        self.prompts: list[str] = []

    def choose(
        self,
        plan: MutationPlan,
        preview: Preview | None,
        risk: RiskLevel,
    ) -> ApprovalChoice:
        if not self._choices:
            raise ApprovalError("No scripted approval choice left")
        return self._choices.pop(0)

    def confirm(self, message: str) -> bool:
        self.prompts.append(message)
        if not self._confirmations:
            raise ApprovalError("No scripted confirmation left")
        return self._confirmations.pop(0)

    def save_preview(self, preview: Preview) -> str | None:
        if self._preview_dir is None:
            self.saved_previews.append("")
            return None
        index = len(self.saved_previews) + 1
        path = save_preview(preview, f"{self._preview_dir}/preview-{index}.md")
        self.saved_previews.append(path)
        return path


class CallbackApprovalProvider(BaseApprovalProvider):
    """
    Wraps callables, e.g. a chat or web approval hook.

    ``callback(plan, preview, risk)`` may return an ApprovalChoice, a
    choice string or a bool (True applies). ``confirm_callback`` answers
    the high-risk confirmation; without it high-risk changes are declined.
    """

    def __init__(
        self,
        callback: Callable[[MutationPlan, Any, RiskLevel], Any],
        confirm_callback: Callable[[str], bool] | None = None,
    ) -> None:
        self._callback = callback
        self._confirm = confirm_callback

    def choose(
        self,
        plan: MutationPlan,
        preview: Preview | None,
        risk: RiskLevel,
    ) -> ApprovalChoice:
        return _coerce_choice(self._callback(plan, preview, risk))

    def confirm(self, message: str) -> bool:
        if self._confirm is None:
            logger.warning("No confirmation callback; declining high-risk change")
            return False
        return bool(self._confirm(message))
