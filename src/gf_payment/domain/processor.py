"""Payment processor Protocol.

Implementations raise PaymentProcessorError; `retryable=True` marks
transient failures (network, rate limit, 5xx).
"""

from typing import Protocol

from src.gf_payment.domain.models import CaptureResult, PaymentDetails


class PaymentProcessorProtocol(Protocol):
    async def capture(self, payment_ref: str, amount: int | None = None) -> CaptureResult:
        """Capture an authorized payment; amount=None captures the full hold."""
        ...

    async def refund(self, payment_ref: str, amount: int | None = None) -> None: ...

    async def void(self, payment_ref: str) -> None:
        """Release an uncaptured authorization."""
        ...

    async def retrieve(self, payment_ref: str) -> PaymentDetails | None:
        """None when the processor has no such payment."""
        ...
