"""Domain models for gf_payment — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.gf_common.enums import ContributionStatus


@dataclass
class Contribution:
    id: str
    project_id: str
    contributor_id: str
    payment_ref: str             # authorized PaymentIntent held for this share
    amount: int                  # cents
    status: str = ContributionStatus.HELD.value
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CaptureResult:
    payment_ref: str
    amount_captured: int         # cents
    status: str                  # processor-side status, e.g. "succeeded"


@dataclass
class PaymentDetails:
    """What the processor knows about a payment, used to rebuild lost orders."""

    payment_ref: str
    amount: int                  # cents authorized
    amount_received: int         # cents captured
    currency: str
    status: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_captured(self) -> bool:
        return self.status == "succeeded"


@dataclass
class GroupCaptureOutcome:
    captured: list[Contribution] = field(default_factory=list)
    failed: list[Contribution] = field(default_factory=list)
    compensation_failures: list[str] = field(default_factory=list)

    @property
    def captured_total(self) -> int:
        return sum(c.amount for c in self.captured)

    @classmethod
    def of(cls, contributions: list[Contribution]) -> "GroupCaptureOutcome":
        """Outcome so far, read from the contributions' current statuses."""
        return cls(
            captured=[c for c in contributions if c.status == ContributionStatus.CAPTURED.value],
            failed=[c for c in contributions if c.status == ContributionStatus.FAILED.value],
        )
