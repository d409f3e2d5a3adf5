"""
Approval Gate
~~~~~~~~~~~~~

Decides whether a planned mutation may be applied. Low-risk changes
can pass automatically; everything else goes to a pluggable reviewer
(see ``approval.providers``).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from plyra_registry.approval.base import BaseApprovalProvider
from plyra_registry.core.levels import ApprovalChoice, ApprovalMethod, RiskLevel
from plyra_registry.core.patch import MutationPlan
from plyra_registry.core.session import ApprovalDecision, SessionOptions

if TYPE_CHECKING:
    from plyra_registry.collaborators.diff import Preview

__all__ = ["ApprovalGate"]

logger = logging.getLogger(__name__)

AUTO_APPROVED = "risk level acceptable for auto-approval"
AUTO_REJECTED = "risk level too high for auto-approval"
USER_APPROVED = "User approved"
USER_REJECTED = "User rejected"
HIGH_RISK_DECLINED = "User declined high-risk confirmation"
TIMED_OUT = "approval timed out"


class ApprovalGate:
    """
    Turns a plan, its preview and the session options into an
    ApprovalDecision.

    The decision is automatic when ``auto_approve`` is set, the session
    is non-interactive, or no provider is configured: the change passes
    iff its risk is at most ``max_auto_approve_risk``. Otherwise the
    provider is asked to apply, cancel or save the preview (which loops
    back to the question). Applying a high-risk change needs a second
    confirmation; declining it cancels.

    Provider failures reject the change. The gate has no side effects of
    its own.

    Args:
        provider: Reviewer for interactive sessions.
        timeout: Default seconds ``decide_async`` waits for a reviewer.
    """

    def __init__(
        self,
        provider: BaseApprovalProvider | None = None,
        timeout: float = 300.0,
    ) -> None:
        self._provider = provider
        self._timeout = timeout

    @property
    def provider(self) -> BaseApprovalProvider | None:
        return self._provider

    @staticmethod
    def effective_risk(plan: MutationPlan, preview: Preview | None = None) -> RiskLevel:
        """The higher of the plan's declared risk and the preview's."""
        risk = plan.risk_level
        if preview is not None and preview.risk_level > risk:
            return preview.risk_level
        return risk

    def decide(
        self,
        plan: MutationPlan,
        options: SessionOptions,
        preview: Preview | None = None,
    ) -> ApprovalDecision:
        risk = self.effective_risk(plan, preview)

        if options.auto_approve or not options.interactive or self._provider is None:
            if not options.auto_approve and options.interactive:
                logger.warning("No approval provider configured; deciding automatically")
            threshold = options.max_auto_approve_risk
            approved = risk <= threshold
            logger.info(
                "Automatic approval: risk=%s threshold=%s approved=%s",
                risk.value,
                threshold.value,
                approved,
            )
            return ApprovalDecision(
                approved=approved,
                method=ApprovalMethod.AUTOMATIC,
                reason=AUTO_APPROVED if approved else AUTO_REJECTED,
            )

        try:
            return self._ask(self._provider, plan, preview, risk)
        except Exception as exc:
            logger.error("Approval provider failed: %s", exc)
            return ApprovalDecision(
                approved=False,
                method=ApprovalMethod.INTERACTIVE,
                reason=f"Approval provider failed: {exc}",
            )

    async def decide_async(
        self,
        plan: MutationPlan,
        options: SessionOptions,
        preview: Preview | None = None,
        timeout: float | None = None,
    ) -> ApprovalDecision:
        """
        Async version of decide.

        The reviewer runs in a daemon thread; no answer within
        ``timeout`` seconds cancels the change. An abandoned reviewer
        does not block the caller or interpreter shutdown.
        """
        limit = timeout if timeout is not None else self._timeout
        loop = asyncio.get_running_loop()
        answer: asyncio.Future[ApprovalDecision] = loop.create_future()

        def deliver(decision: ApprovalDecision | None, error: Exception | None) -> None:
            if answer.done():
                return
            if error is not None:
                answer.set_exception(error)
            else:
                answer.set_result(decision)

        def review() -> None:
            decision, error = None, None
            try:
                decision = self.decide(plan, options, preview)
            except Exception as exc:
                error = exc
            try:
                loop.call_soon_threadsafe(deliver, decision, error)
            except RuntimeError:
                logger.debug("Approval answered after the event loop closed")

        threading.Thread(target=review, name="approval-review", daemon=True).start()
        try:
            return await asyncio.wait_for(answer, timeout=limit)
        except TimeoutError:
            logger.warning("Approval timed out after %ss", limit)
            return ApprovalDecision(
                approved=False,
                method=ApprovalMethod.INTERACTIVE,
                reason=TIMED_OUT,
            )

    @staticmethod
    def _ask(
        provider: BaseApprovalProvider,
        plan: MutationPlan,
        preview: Preview | None,
        risk: RiskLevel,
    ) -> ApprovalDecision:
        while True:
            choice = provider.choose(plan, preview, risk)

            if choice == ApprovalChoice.SAVE_PREVIEW:
                if preview is None:
                    logger.warning("No preview to save")
                else:
                    path = provider.save_preview(preview)
                    logger.info("Preview saved to %s", path)
                continue

            if choice == ApprovalChoice.CANCEL:
                return ApprovalDecision(False, ApprovalMethod.INTERACTIVE, USER_REJECTED)

            if risk == RiskLevel.HIGH and not provider.confirm(
                "This is a HIGH risk change. Apply anyway?"
            ):
                return ApprovalDecision(False, ApprovalMethod.INTERACTIVE, HIGH_RISK_DECLINED)

            return ApprovalDecision(True, ApprovalMethod.INTERACTIVE, USER_APPROVED)
