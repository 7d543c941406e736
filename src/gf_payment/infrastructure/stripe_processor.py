"""Stripe-backed PaymentProcessorProtocol.

The Stripe SDK is synchronous; each call runs in a worker thread so the
event loop is never blocked. Stripe exceptions are mapped onto
PaymentProcessorError, with connection, rate-limit and server-side API
errors marked retryable.
"""

import asyncio
import logging
from typing import Any

import stripe

from config.settings import settings
from src.gf_common.errors import PaymentProcessorError
from src.gf_payment.domain.models import CaptureResult, PaymentDetails

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


def _to_processor_error(exc: stripe.StripeError) -> PaymentProcessorError:
    retryable = isinstance(exc, _TRANSIENT_ERRORS)
    detail = exc.user_message or str(exc)
    return PaymentProcessorError(detail, retryable=retryable)


def _to_details(intent: Any) -> PaymentDetails:
    return PaymentDetails(
        payment_ref=intent.id,
        amount=intent.amount,
        amount_received=intent.amount_received or 0,
        currency=intent.currency,
        status=intent.status,
        metadata=dict(intent.metadata or {}),
    )


class StripePaymentProcessor:
    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = api_key or settings.STRIPE_SECRET_KEY

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, api_key=self._api_key, **kwargs)
        except stripe.StripeError as exc:
            raise _to_processor_error(exc) from exc

    async def capture(self, payment_ref: str, amount: int | None = None) -> CaptureResult:
        kwargs: dict[str, Any] = {}
        if amount is not None:
            kwargs["amount_to_capture"] = amount
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.capture, payment_ref, api_key=self._api_key, **kwargs
            )
        except stripe.InvalidRequestError as exc:
            # A capture retried after a lost response lands here once the
            # first attempt went through.
            if exc.code != "payment_intent_unexpected_state":
                raise _to_processor_error(exc) from exc
            details = await self.retrieve(payment_ref)
            if details is None or not details.is_captured:
                raise _to_processor_error(exc) from exc
            logger.info("PaymentIntent %s was already captured", payment_ref)
            return CaptureResult(payment_ref, details.amount_received, details.status)
        except stripe.StripeError as exc:
            raise _to_processor_error(exc) from exc
        return CaptureResult(intent.id, intent.amount_received or 0, intent.status)

    async def refund(self, payment_ref: str, amount: int | None = None) -> None:
        kwargs: dict[str, Any] = {"payment_intent": payment_ref}
        if amount is not None:
            kwargs["amount"] = amount
        await self._call(stripe.Refund.create, **kwargs)

    async def void(self, payment_ref: str) -> None:
        await self._call(stripe.PaymentIntent.cancel, payment_ref)

    async def retrieve(self, payment_ref: str) -> PaymentDetails | None:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve, payment_ref, api_key=self._api_key
            )
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                return None
            raise _to_processor_error(exc) from exc
        except stripe.StripeError as exc:
            raise _to_processor_error(exc) from exc
        return _to_details(intent)
