"""ContributionRepository — raw SQL persistence for group-gift contributions.

Transaction ownership: the CALLER (application service) commits or rolls back.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_payment.domain.models import Contribution

_COLUMNS = """
    id, project_id, contributor_id, payment_ref, amount, status,
    last_error, created_at, updated_at
"""

_INSERT_SQL = text("""
    INSERT INTO group_gift_contributions
        (id, project_id, contributor_id, payment_ref, amount, status)
    VALUES (:id, :project_id, :contributor_id, :payment_ref, :amount, :status)
    ON CONFLICT (payment_ref) DO NOTHING
    RETURNING created_at, updated_at
""")

_LIST_BY_PROJECT_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM group_gift_contributions
    WHERE project_id = :project_id
    ORDER BY created_at ASC, id ASC
""")

_LIST_BY_PROJECT_FOR_UPDATE_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM group_gift_contributions
    WHERE project_id = :project_id
    ORDER BY created_at ASC, id ASC
    FOR UPDATE
""")

_UPDATE_STATUS_SQL = text("""
    UPDATE group_gift_contributions
    SET status = :status, last_error = CAST(:last_error AS TEXT), updated_at = NOW()
    WHERE id = :id
""")


def _row_to_contribution(row: Any) -> Contribution:
    return Contribution(
        id=row.id,
        project_id=row.project_id,
        contributor_id=row.contributor_id,
        payment_ref=row.payment_ref,
        amount=row.amount,
        status=row.status,
        last_error=row.last_error,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class ContributionRepository:
    async def insert(self, contribution: Contribution, db: AsyncSession) -> bool:
        row = (
            await db.execute(
                _INSERT_SQL,
                {
                    "id": contribution.id,
                    "project_id": contribution.project_id,
                    "contributor_id": contribution.contributor_id,
                    "payment_ref": contribution.payment_ref,
                    "amount": contribution.amount,
                    "status": contribution.status,
                },
            )
        ).fetchone()
        if row is None:
            return False
        contribution.created_at = row.created_at
        contribution.updated_at = row.updated_at
        return True

    async def list_by_project(
        self, project_id: str, db: AsyncSession, for_update: bool = False
    ) -> list[Contribution]:
        sql = _LIST_BY_PROJECT_FOR_UPDATE_SQL if for_update else _LIST_BY_PROJECT_SQL
        rows = (await db.execute(sql, {"project_id": project_id})).fetchall()
        return [_row_to_contribution(row) for row in rows]

    async def update_status(
        self,
        contribution_id: str,
        status: str,
        last_error: str | None,
        db: AsyncSession,
    ) -> None:
        await db.execute(
            _UPDATE_STATUS_SQL,
            {"id": contribution_id, "status": status, "last_error": last_error},
        )
