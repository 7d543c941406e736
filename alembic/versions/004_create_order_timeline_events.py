"""004: create order_timeline_events table

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE order_timeline_events (
            id              BIGSERIAL       PRIMARY KEY,
            order_id        VARCHAR(32)     NOT NULL REFERENCES orders (id),
            event_id        VARCHAR(200)    NOT NULL,
            event_type      VARCHAR(64)     NOT NULL,
            source          VARCHAR(20)     NOT NULL,
            message         TEXT,
            data            JSONB           NOT NULL DEFAULT '{}'::jsonb,
            occurred_at     TIMESTAMPTZ     NOT NULL,
            recorded_at     TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_timeline_order_event UNIQUE (order_id, event_id),
            CONSTRAINT ck_timeline_source      CHECK (source IN ('provider', 'merchant', 'admin'))
        );
    """)
    op.execute("""
        CREATE INDEX idx_timeline_order_occurred
        ON order_timeline_events (order_id, occurred_at, id);
    """)
    op.execute("""
        CREATE TRIGGER trg_order_timeline_events_append_only
            BEFORE UPDATE OR DELETE ON order_timeline_events
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS order_timeline_events CASCADE;")
