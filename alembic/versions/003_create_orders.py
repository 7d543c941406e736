"""003: create orders table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE orders (
            id                      VARCHAR(32)     PRIMARY KEY,
            payment_ref             VARCHAR(128)    NOT NULL,
            total_amount            BIGINT          NOT NULL,
            currency                VARCHAR(3)      NOT NULL DEFAULT 'usd',
            status                  VARCHAR(20)     NOT NULL DEFAULT 'created',
            payment_status          VARCHAR(20)     NOT NULL DEFAULT 'unpaid',
            funding_status          VARCHAR(20),
            funding_hold_reason     TEXT,
            expected_funding_date   TIMESTAMPTZ,
            reserved_amount         BIGINT          NOT NULL DEFAULT 0,
            fulfillment_request_id  VARCHAR(128),
            webhook_token           VARCHAR(64),
            dispatch_attempts       INT             NOT NULL DEFAULT 0,
            merchant_tracking       JSONB           NOT NULL DEFAULT '{}'::jsonb,
            line_items              JSONB           NOT NULL DEFAULT '[]'::jsonb,
            shipping_address        JSONB           NOT NULL DEFAULT '{}'::jsonb,
            group_project_id        VARCHAR(64),
            scheduled_for           TIMESTAMPTZ,
            needs_manual_review     BOOLEAN         NOT NULL DEFAULT FALSE,
            manual_review_reason    TEXT,
            notes                   TEXT,
            version                 BIGINT          NOT NULL DEFAULT 0,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_orders_payment_ref            UNIQUE (payment_ref),
            CONSTRAINT uq_orders_fulfillment_request_id UNIQUE (fulfillment_request_id),
            CONSTRAINT ck_orders_total_amount_gt_0      CHECK (total_amount > 0),
            CONSTRAINT ck_orders_reserved_gte_0         CHECK (reserved_amount >= 0),
            CONSTRAINT ck_orders_dispatch_attempts_gte_0 CHECK (dispatch_attempts >= 0),
            CONSTRAINT ck_orders_status                 CHECK (
                status IN ('created', 'scheduled', 'payment_confirmed', 'awaiting_funds',
                           'processing', 'retry_pending', 'shipped', 'delivered',
                           'failed', 'cancelled')
            ),
            CONSTRAINT ck_orders_payment_status         CHECK (
                payment_status IN ('unpaid', 'authorized', 'paid', 'refunded', 'voided')
            ),
            CONSTRAINT ck_orders_funding_status         CHECK (
                funding_status IS NULL OR funding_status = 'awaiting_funds'
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_orders_awaiting_funds
        ON orders (created_at, id)
        WHERE status = 'awaiting_funds';
    """)
    op.execute("""
        CREATE INDEX idx_orders_paid_undispatched
        ON orders (created_at, id)
        WHERE payment_status = 'paid' AND status IN ('failed', 'created');
    """)
    op.execute("CREATE INDEX idx_orders_group_project ON orders (group_project_id);")
    op.execute("""
        CREATE TRIGGER trg_orders_updated_at
            BEFORE UPDATE ON orders
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute(
        "COMMENT ON TABLE orders IS "
        "'Gift orders: status, funding hold and the single active fulfillment request';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS orders CASCADE;")
