# src/gf_funding/domain/repository.py
"""Repository Protocol — dependency inversion for testability."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_funding.domain.models import FundingAccount, FundingLedgerEntry


class FundingRepositoryProtocol(Protocol):
    async def get_default_account(self, db: AsyncSession) -> FundingAccount | None:
        """The single active default account, or None."""
        ...

    async def try_reserve(
        self,
        account_id: int,
        amount: int,
        required: int | None,
        order_id: str,
        db: AsyncSession,
    ) -> FundingAccount | None:
        """Move `amount` from available to reserved iff available >= required.

        One conditional UPDATE; `required=None` skips the check. Returns the
        updated account, or None when the balance did not cover `required`.
        """
        ...

    async def settle(
        self, account_id: int, amount: int, order_id: str, db: AsyncSession
    ) -> FundingAccount:
        """Consume a reservation (the provider drew the money)."""
        ...

    async def release(
        self, account_id: int, amount: int, order_id: str, db: AsyncSession
    ) -> FundingAccount:
        """Return a reservation to available."""
        ...

    async def record_transfer(
        self,
        account_id: int,
        amount: int,
        reference: str,
        description: str | None,
        db: AsyncSession,
    ) -> tuple[FundingAccount, FundingLedgerEntry]: ...

    async def list_entries(
        self, account_id: int, limit: int, db: AsyncSession
    ) -> list[FundingLedgerEntry]: ...
