"""002: create funding_accounts + funding_ledger_entries

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE funding_accounts (
            id                  BIGSERIAL       PRIMARY KEY,
            name                VARCHAR(64)     NOT NULL,
            available_balance   BIGINT          NOT NULL DEFAULT 0,
            reserved_balance    BIGINT          NOT NULL DEFAULT 0,
            safety_margin       BIGINT          NOT NULL DEFAULT 0,
            version             BIGINT          NOT NULL DEFAULT 0,
            is_default          BOOLEAN         NOT NULL DEFAULT FALSE,
            is_active           BOOLEAN         NOT NULL DEFAULT TRUE,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_funding_accounts_name         UNIQUE (name),
            CONSTRAINT ck_funding_accounts_reserved_gte_0 CHECK (reserved_balance >= 0),
            CONSTRAINT ck_funding_accounts_margin_gte_0 CHECK (safety_margin >= 0)
        );
    """)
    # available_balance may go negative only through force_process, so it has no CHECK
    op.execute("""
        CREATE UNIQUE INDEX uq_funding_accounts_default
        ON funding_accounts (is_default)
        WHERE is_default = TRUE AND is_active = TRUE;
    """)
    op.execute("""
        CREATE TRIGGER trg_funding_accounts_updated_at
            BEFORE UPDATE ON funding_accounts
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE funding_ledger_entries (
            id              BIGSERIAL       PRIMARY KEY,
            account_id      BIGINT          NOT NULL REFERENCES funding_accounts (id),
            entry_type      VARCHAR(20)     NOT NULL,
            amount          BIGINT          NOT NULL,
            balance_after   BIGINT          NOT NULL,
            reference_type  VARCHAR(20),
            reference_id    VARCHAR(128),
            description     TEXT,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_funding_ledger_entry_type CHECK (
                entry_type IN ('TRANSFER_IN', 'RESERVE', 'RELEASE', 'SETTLE')
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_funding_ledger_account
        ON funding_ledger_entries (account_id, created_at DESC);
    """)
    op.execute("""
        CREATE INDEX idx_funding_ledger_reference
        ON funding_ledger_entries (reference_type, reference_id);
    """)
    op.execute("""
        CREATE TRIGGER trg_funding_ledger_entries_append_only
            BEFORE UPDATE OR DELETE ON funding_ledger_entries
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS funding_ledger_entries CASCADE;")
    op.execute("DROP TABLE IF EXISTS funding_accounts CASCADE;")
