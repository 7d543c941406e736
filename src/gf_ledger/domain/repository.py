# src/gf_ledger/domain/repository.py
"""Repository Protocol — dependency inversion for testability.

Unit tests inject an in-memory double that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_ledger.domain.models import Order, TimelineEvent


class OrderRepositoryProtocol(Protocol):
    async def insert(self, order: Order, db: AsyncSession) -> bool:
        """Insert a new order. False if payment_ref already exists."""
        ...

    async def get_by_id(
        self, order_id: str, db: AsyncSession, for_update: bool = False
    ) -> Order | None: ...

    async def get_by_payment_ref(
        self, payment_ref: str, db: AsyncSession
    ) -> Order | None: ...

    async def get_by_fulfillment_request_id(
        self, request_id: str, db: AsyncSession, for_update: bool = False
    ) -> Order | None: ...

    async def save(self, order: Order, db: AsyncSession) -> None:
        """Write all mutable fields, guarded by order.version; bumps version.

        Raises ConcurrentModificationError if the row moved on.
        """
        ...

    async def append_timeline_event(
        self, order_id: str, event: TimelineEvent, db: AsyncSession
    ) -> bool:
        """Insert unless (order_id, event.id) exists. True if inserted."""
        ...

    async def list_timeline(self, order_id: str, db: AsyncSession) -> list[TimelineEvent]: ...

    async def list_awaiting_funds(self, limit: int, db: AsyncSession) -> list[Order]:
        """Oldest-first (created_at, id)."""
        ...

    async def list_paid_undispatched(self, limit: int, db: AsyncSession) -> list[Order]:
        """payment_status=paid, status failed/created, not held for manual review."""
        ...

    async def sum_awaiting_funds(self, db: AsyncSession) -> tuple[int, int]:
        """(order count, total estimated cost in cents) of awaiting_funds orders."""
        ...
