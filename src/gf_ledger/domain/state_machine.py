"""Order status transition graph.

Each edge lists the causes allowed to drive it. An edge that is absent, or
present but not for the given cause, is rejected with InvalidTransitionError.
delivered and cancelled have no outgoing edges; failed only has the admin
recovery edges.
"""

from src.gf_common.enums import OrderStatus as S
from src.gf_common.enums import TransitionCause as C
from src.gf_common.errors import InvalidTransitionError

TRANSITIONS: dict[tuple[S, S], frozenset[C]] = {
    (S.CREATED, S.PAYMENT_CONFIRMED): frozenset({C.CAPTURE, C.ADMIN}),
    (S.CREATED, S.SCHEDULED): frozenset({C.CAPTURE}),
    (S.CREATED, S.FAILED): frozenset({C.CAPTURE}),
    (S.CREATED, S.CANCELLED): frozenset({C.ADMIN}),
    (S.SCHEDULED, S.PAYMENT_CONFIRMED): frozenset({C.WORKER, C.ADMIN}),
    (S.SCHEDULED, S.FAILED): frozenset({C.CAPTURE, C.ADMIN}),
    (S.SCHEDULED, S.CANCELLED): frozenset({C.ADMIN}),
    (S.PAYMENT_CONFIRMED, S.AWAITING_FUNDS): frozenset({C.ADMISSION}),
    (S.PAYMENT_CONFIRMED, S.PROCESSING): frozenset({C.DISPATCH}),
    (S.PAYMENT_CONFIRMED, S.FAILED): frozenset({C.DISPATCH, C.PROVIDER, C.ADMIN}),
    (S.PAYMENT_CONFIRMED, S.CANCELLED): frozenset({C.ADMIN}),
    (S.AWAITING_FUNDS, S.PAYMENT_CONFIRMED): frozenset({C.FUNDS_RETRY, C.ADMIN}),
    (S.AWAITING_FUNDS, S.PROCESSING): frozenset({C.DISPATCH}),
    (S.AWAITING_FUNDS, S.FAILED): frozenset({C.DISPATCH, C.ADMIN}),
    (S.AWAITING_FUNDS, S.CANCELLED): frozenset({C.ADMIN}),
    (S.PROCESSING, S.SHIPPED): frozenset({C.PROVIDER}),
    (S.PROCESSING, S.DELIVERED): frozenset({C.PROVIDER}),
    (S.PROCESSING, S.FAILED): frozenset({C.PROVIDER, C.DISPATCH, C.ADMIN}),
    (S.PROCESSING, S.CANCELLED): frozenset({C.PROVIDER, C.ADMIN}),
    (S.PROCESSING, S.RETRY_PENDING): frozenset({C.PROVIDER}),
    (S.PROCESSING, S.PAYMENT_CONFIRMED): frozenset({C.ADMIN}),
    (S.RETRY_PENDING, S.PAYMENT_CONFIRMED): frozenset({C.WORKER, C.ADMIN}),
    (S.RETRY_PENDING, S.FAILED): frozenset({C.WORKER, C.ADMIN}),
    (S.RETRY_PENDING, S.CANCELLED): frozenset({C.ADMIN}),
    (S.SHIPPED, S.DELIVERED): frozenset({C.PROVIDER}),
    (S.SHIPPED, S.FAILED): frozenset({C.PROVIDER, C.ADMIN}),
    (S.SHIPPED, S.CANCELLED): frozenset({C.ADMIN}),
    (S.FAILED, S.PAYMENT_CONFIRMED): frozenset({C.ADMIN}),
    (S.FAILED, S.CANCELLED): frozenset({C.ADMIN}),
}


def can_transition(current: S | str, target: S | str, cause: C) -> bool:
    key = (S(current), S(target))
    return cause in TRANSITIONS.get(key, frozenset())


def check_transition(order_id: str, current: S | str, target: S | str, cause: C) -> None:
    if not can_transition(current, target, cause):
        raise InvalidTransitionError(order_id, S(current).value, S(target).value, cause.value)


def allowed_targets(current: S | str, cause: C) -> list[S]:
    """All statuses reachable from `current` for `cause`, in enum order."""
    src = S(current)
    return [dst for dst in S if cause in TRANSITIONS.get((src, dst), frozenset())]
