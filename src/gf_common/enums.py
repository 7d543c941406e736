"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class OrderStatus(str, Enum):
    CREATED = "created"
    SCHEDULED = "scheduled"
    PAYMENT_CONFIRMED = "payment_confirmed"
    AWAITING_FUNDS = "awaiting_funds"
    PROCESSING = "processing"
    RETRY_PENDING = "retry_pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FundingStatus(str, Enum):
    AWAITING_FUNDS = "awaiting_funds"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    AUTHORIZED = "authorized"
    PAID = "paid"
    REFUNDED = "refunded"
    VOIDED = "voided"


class ContributionStatus(str, Enum):
    HELD = "held"
    CAPTURED = "captured"
    FAILED = "failed"
    # Compensated after a sibling capture failed
    REFUNDED = "refunded"
    VOIDED = "voided"


class TimelineSource(str, Enum):
    PROVIDER = "provider"
    MERCHANT = "merchant"
    ADMIN = "admin"


class TransitionCause(str, Enum):
    """Who is driving a status change; the state machine allows edges per cause."""
    CAPTURE = "capture"
    ADMISSION = "admission"
    DISPATCH = "dispatch"
    PROVIDER = "provider"
    ADMIN = "admin"
    FUNDS_RETRY = "funds_retry"
    WORKER = "worker"


class AdminAction(str, Enum):
    RETRY = "retry"
    RECONCILE = "reconcile"
    RECOVER = "recover"
    CANCEL = "cancel"
    FORCE_PROCESS = "force_process"
    FAIL = "fail"


class AuditResult(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    ERROR = "error"
    UNAUTHORIZED = "unauthorized"


class FundingEntryType(str, Enum):
    TRANSFER_IN = "TRANSFER_IN"
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    SETTLE = "SETTLE"


class AlertType(str, Enum):
    UNMAPPED_PROVIDER_EVENT = "unmapped_provider_event"
    COMPENSATION_FAILED = "compensation_failed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    RELEASE_FAILED = "release_failed"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class WorkItemKind(str, Enum):
    NOTIFY = "notify"
    DISPATCH = "dispatch"


class WorkItemStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    DEAD = "dead"
