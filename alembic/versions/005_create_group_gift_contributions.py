"""005: create group_gift_contributions table

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE group_gift_contributions (
            id              VARCHAR(32)     PRIMARY KEY,
            project_id      VARCHAR(64)     NOT NULL,
            contributor_id  VARCHAR(64)     NOT NULL,
            payment_ref     VARCHAR(128)    NOT NULL,
            amount          BIGINT          NOT NULL,
            status          VARCHAR(20)     NOT NULL DEFAULT 'held',
            last_error      TEXT,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_contributions_payment_ref UNIQUE (payment_ref),
            CONSTRAINT ck_contributions_amount_gt_0 CHECK (amount > 0),
            CONSTRAINT ck_contributions_status      CHECK (
                status IN ('held', 'captured', 'failed', 'refunded', 'voided')
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_contributions_project
        ON group_gift_contributions (project_id, created_at);
    """)
    op.execute("""
        CREATE TRIGGER trg_group_gift_contributions_updated_at
            BEFORE UPDATE ON group_gift_contributions
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS group_gift_contributions CASCADE;")
