"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Request / Auth
  2xxx: Funding
  3xxx: Payment
  4xxx: Order
  5xxx: External services
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Request / Auth ---

class ValidationError(AppError):
    """Malformed request or payload. Never mutates state."""

    def __init__(self, detail: str) -> None:
        super().__init__(1001, f"Validation failed: {detail}", 422)


class AuthenticationError(AppError):
    def __init__(self, detail: str = "Invalid or expired credentials") -> None:
        super().__init__(1002, detail, 401)


class AuthorizationError(AppError):
    def __init__(self, detail: str = "Admin privileges required") -> None:
        super().__init__(1003, detail, 403)


# --- 2xxx: Funding ---

class InsufficientFundsError(AppError):
    """Not a failure: the order is parked in awaiting_funds and retried later."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            2001,
            f"Insufficient funding balance: required {required} cents, "
            f"available {available} cents",
            422,
        )

    @property
    def shortfall(self) -> int:
        return max(self.required - self.available, 0)


class FundingAccountNotFoundError(AppError):
    def __init__(self) -> None:
        super().__init__(2002, "No active default funding account", 503)


# --- 3xxx / 4xxx: Not found ---

class NotFoundError(AppError):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message, 404)


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_ref: str) -> None:
        super().__init__(3004, f"Payment not found: {payment_ref}")


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_ref: str) -> None:
        super().__init__(4004, f"Order not found: {order_ref}")


# --- 4xxx: Conflicts ---

class ConflictError(AppError):
    def __init__(self, message: str, code: int = 4009) -> None:
        super().__init__(code, message, 409)


class InvalidTransitionError(ConflictError):
    def __init__(self, order_id: str, current: str, target: str, cause: str) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Order {order_id}: transition {current} -> {target} not allowed ({cause})",
            code=4010,
        )


class ConcurrentModificationError(ConflictError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} was modified concurrently", code=4011)


# --- 5xxx: External services ---

class ExternalServiceError(AppError):
    """Payment/fulfillment/notification API failure.

    `retryable` marks transient failures (timeouts, 5xx, rate limits) that
    call_with_retry is allowed to repeat within its attempt budget.
    """

    def __init__(
        self,
        service: str,
        detail: str,
        retryable: bool = True,
        code: int = 5000,
    ) -> None:
        self.service = service
        self.retryable = retryable
        super().__init__(code, f"{service} error: {detail}", 502)


class PaymentProcessorError(ExternalServiceError):
    def __init__(self, detail: str, retryable: bool = True) -> None:
        super().__init__("payment_processor", detail, retryable, code=5001)


class FulfillmentProviderError(ExternalServiceError):
    def __init__(self, detail: str, retryable: bool = True) -> None:
        super().__init__("fulfillment_provider", detail, retryable, code=5002)


class NotificationError(ExternalServiceError):
    def __init__(self, detail: str, retryable: bool = True) -> None:
        super().__init__("notification", detail, retryable, code=5003)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
