"""Fulfillment provider Protocol.

Implementations raise FulfillmentProviderError; `retryable=True` marks
transient failures (timeouts, connection errors, 5xx).
"""

from typing import Protocol

from src.gf_fulfillment.domain.models import FulfillmentRequest, FulfillmentSubmission


class FulfillmentProviderProtocol(Protocol):
    async def submit(self, request: FulfillmentRequest) -> FulfillmentSubmission: ...
