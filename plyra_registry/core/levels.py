"""
Registry Risk Level & Status Enums
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Core enums that classify mutation risk and describe the state of
session steps and approval decisions.
"""

from enum import StrEnum

__all__ = ["RiskLevel", "StepStatus", "ApprovalMethod", "ApprovalChoice"]


class RiskLevel(StrEnum):
    """
    Coarse classification of a mutation's potential impact.

    Ordered ``LOW < MEDIUM < HIGH``; the ordering gates automatic
    approval.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def rank(self) -> int:
        """Return the numeric rank used for threshold comparisons."""
        return {
            RiskLevel.LOW: 1,
            RiskLevel.MEDIUM: 2,
            RiskLevel.HIGH: 3,
        }[self]

    def __le__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank() <= other.rank()

    def __lt__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank() < other.rank()

    def __ge__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank() >= other.rank()

    def __gt__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank() > other.rank()

    @classmethod
    def parse(cls, value: "str | RiskLevel | None", default: "RiskLevel | None" = None) -> "RiskLevel":
        """
        Parse a risk level case-insensitively.

        Unknown or missing values fall back to ``default`` (HIGH when
        no default is given, so an unclassified plan is never
        auto-approved).
        """
        if isinstance(value, RiskLevel):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return default if default is not None else cls.HIGH


class StepStatus(StrEnum):
    """Lifecycle status of a single session step."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ApprovalMethod(StrEnum):
    """How an approval decision was reached."""

    AUTOMATIC = "automatic"
    INTERACTIVE = "interactive"


class ApprovalChoice(StrEnum):
    """The three resolutions an interactive reviewer can pick."""

    APPLY = "apply"
    CANCEL = "cancel"
    SAVE_PREVIEW = "save_preview"
