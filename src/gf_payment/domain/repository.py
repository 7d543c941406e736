"""Repository Protocol — dependency inversion for testability."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_payment.domain.models import Contribution


class ContributionRepositoryProtocol(Protocol):
    async def insert(self, contribution: Contribution, db: AsyncSession) -> bool:
        """False if the payment_ref is already registered."""
        ...

    async def list_by_project(
        self, project_id: str, db: AsyncSession, for_update: bool = False
    ) -> list[Contribution]:
        """All contributions for a group-gift project, oldest first."""
        ...

    async def update_status(
        self,
        contribution_id: str,
        status: str,
        last_error: str | None,
        db: AsyncSession,
    ) -> None: ...
