"""007: create work_queue table

Revision ID: 007
Revises: 006
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "007"
down_revision: Union[str, None] = "006"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE work_queue (
            id              BIGSERIAL       PRIMARY KEY,
            kind            VARCHAR(20)     NOT NULL,
            dedupe_key      VARCHAR(200)    NOT NULL,
            payload         JSONB           NOT NULL DEFAULT '{}'::jsonb,
            status          VARCHAR(10)     NOT NULL DEFAULT 'pending',
            attempts        INT             NOT NULL DEFAULT 0,
            max_attempts    INT             NOT NULL DEFAULT 5,
            next_run_at     TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            last_error      TEXT,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_work_queue_dedupe_key UNIQUE (dedupe_key),
            CONSTRAINT ck_work_queue_kind       CHECK (kind IN ('notify', 'dispatch')),
            CONSTRAINT ck_work_queue_status     CHECK (status IN ('pending', 'done', 'dead')),
            CONSTRAINT ck_work_queue_attempts   CHECK (attempts >= 0 AND max_attempts > 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_work_queue_due
        ON work_queue (next_run_at, id)
        WHERE status = 'pending';
    """)
    op.execute("""
        CREATE TRIGGER trg_work_queue_updated_at
            BEFORE UPDATE ON work_queue
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS work_queue CASCADE;")
