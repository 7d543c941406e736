"""FundingRepository — concrete implementation of FundingRepositoryProtocol.

All balance-mutating operations use atomic PostgreSQL UPDATE ... RETURNING.
For try_reserve a result of 0 rows means the balance did not cover the
requirement; for settle/release it means the reservation is not there,
which is an internal inconsistency.

Transaction ownership: The CALLER (application service) commits or rolls back.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.enums import FundingEntryType
from src.gf_common.errors import FundingAccountNotFoundError, InternalError
from src.gf_funding.domain.models import FundingAccount, FundingLedgerEntry

# ---------------------------------------------------------------------------
# SQL: funding_accounts
# ---------------------------------------------------------------------------

_ACCOUNT_COLUMNS = """
    id, name, available_balance, reserved_balance, safety_margin, version,
    is_default, is_active, updated_at
"""

_GET_DEFAULT_ACCOUNT_SQL = text(f"""
    SELECT {_ACCOUNT_COLUMNS}
    FROM funding_accounts
    WHERE is_default = TRUE AND is_active = TRUE
    ORDER BY id
    LIMIT 1
""")

_RESERVE_SQL = text(f"""
    UPDATE funding_accounts
    SET available_balance = available_balance - :amount,
        reserved_balance  = reserved_balance  + :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :account_id
      AND (CAST(:required AS BIGINT) IS NULL OR available_balance >= CAST(:required AS BIGINT))
    RETURNING {_ACCOUNT_COLUMNS}
""")

_SETTLE_SQL = text(f"""
    UPDATE funding_accounts
    SET reserved_balance = reserved_balance - :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :account_id AND reserved_balance >= :amount
    RETURNING {_ACCOUNT_COLUMNS}
""")

_RELEASE_SQL = text(f"""
    UPDATE funding_accounts
    SET available_balance = available_balance + :amount,
        reserved_balance  = reserved_balance  - :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :account_id AND reserved_balance >= :amount
    RETURNING {_ACCOUNT_COLUMNS}
""")

_TRANSFER_IN_SQL = text(f"""
    UPDATE funding_accounts
    SET available_balance = available_balance + :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :account_id
    RETURNING {_ACCOUNT_COLUMNS}
""")

# ---------------------------------------------------------------------------
# SQL: funding_ledger_entries
# ---------------------------------------------------------------------------

_INSERT_ENTRY_SQL = text("""
    INSERT INTO funding_ledger_entries
        (account_id, entry_type, amount, balance_after,
         reference_type, reference_id, description)
    VALUES
        (:account_id, :entry_type, :amount, :balance_after,
         :reference_type, :reference_id, :description)
    RETURNING id, account_id, entry_type, amount, balance_after,
              reference_type, reference_id, description, created_at
""")

_LIST_ENTRIES_SQL = text("""
    SELECT id, account_id, entry_type, amount, balance_after,
           reference_type, reference_id, description, created_at
    FROM funding_ledger_entries
    WHERE account_id = :account_id
    ORDER BY id DESC
    LIMIT :limit
""")


def _row_to_account(row: Any) -> FundingAccount:
    return FundingAccount(
        id=row.id,
        name=row.name,
        available_balance=row.available_balance,
        reserved_balance=row.reserved_balance,
        safety_margin=row.safety_margin,
        version=row.version,
        is_default=row.is_default,
        is_active=row.is_active,
        updated_at=row.updated_at,
    )


def _row_to_entry(row: Any) -> FundingLedgerEntry:
    return FundingLedgerEntry(
        id=row.id,
        account_id=row.account_id,
        entry_type=row.entry_type,
        amount=row.amount,
        balance_after=row.balance_after,
        reference_type=row.reference_type,
        reference_id=row.reference_id,
        description=row.description,
        created_at=row.created_at,
    )


class FundingRepository:
    """Concrete repository — all balance operations atomic at the SQL level."""

    async def get_default_account(self, db: AsyncSession) -> FundingAccount | None:
        row = (await db.execute(_GET_DEFAULT_ACCOUNT_SQL)).fetchone()
        return _row_to_account(row) if row else None

    async def try_reserve(
        self,
        account_id: int,
        amount: int,
        required: int | None,
        order_id: str,
        db: AsyncSession,
    ) -> FundingAccount | None:
        row = (
            await db.execute(
                _RESERVE_SQL,
                {"account_id": account_id, "amount": amount, "required": required},
            )
        ).fetchone()
        if row is None:
            return None
        account = _row_to_account(row)
        await self._write_entry(
            account, FundingEntryType.RESERVE, -amount, "order", order_id, None, db
        )
        return account

    async def settle(
        self, account_id: int, amount: int, order_id: str, db: AsyncSession
    ) -> FundingAccount:
        row = (
            await db.execute(_SETTLE_SQL, {"account_id": account_id, "amount": amount})
        ).fetchone()
        if row is None:
            raise InternalError(f"No reservation of {amount} cents to settle for order {order_id}")
        account = _row_to_account(row)
        # available_balance is unchanged by a settle; the entry records the draw
        await self._write_entry(
            account, FundingEntryType.SETTLE, 0, "order", order_id, f"settled {amount}", db
        )
        return account

    async def release(
        self, account_id: int, amount: int, order_id: str, db: AsyncSession
    ) -> FundingAccount:
        row = (
            await db.execute(_RELEASE_SQL, {"account_id": account_id, "amount": amount})
        ).fetchone()
        if row is None:
            raise InternalError(f"No reservation of {amount} cents to release for order {order_id}")
        account = _row_to_account(row)
        await self._write_entry(
            account, FundingEntryType.RELEASE, amount, "order", order_id, None, db
        )
        return account

    async def record_transfer(
        self,
        account_id: int,
        amount: int,
        reference: str,
        description: str | None,
        db: AsyncSession,
    ) -> tuple[FundingAccount, FundingLedgerEntry]:
        row = (
            await db.execute(_TRANSFER_IN_SQL, {"account_id": account_id, "amount": amount})
        ).fetchone()
        if row is None:
            raise FundingAccountNotFoundError()
        account = _row_to_account(row)
        entry = await self._write_entry(
            account, FundingEntryType.TRANSFER_IN, amount, "transfer", reference, description, db
        )
        return account, entry

    async def list_entries(
        self, account_id: int, limit: int, db: AsyncSession
    ) -> list[FundingLedgerEntry]:
        rows = (
            await db.execute(_LIST_ENTRIES_SQL, {"account_id": account_id, "limit": limit})
        ).fetchall()
        return [_row_to_entry(row) for row in rows]

    async def _write_entry(
        self,
        account: FundingAccount,
        entry_type: FundingEntryType,
        amount: int,
        reference_type: str,
        reference_id: str,
        description: str | None,
        db: AsyncSession,
    ) -> FundingLedgerEntry:
        row = (
            await db.execute(
                _INSERT_ENTRY_SQL,
                {
                    "account_id": account.id,
                    "entry_type": entry_type.value,
                    "amount": amount,
                    "balance_after": account.available_balance,
                    "reference_type": reference_type,
                    "reference_id": reference_id,
                    "description": description,
                },
            )
        ).fetchone()
        return _row_to_entry(row)
