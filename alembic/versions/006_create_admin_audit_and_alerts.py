"""006: create admin_audit_log + ops_alerts tables

Revision ID: 006
Revises: 005
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE admin_audit_log (
            id          BIGSERIAL       PRIMARY KEY,
            actor       VARCHAR(128)    NOT NULL,
            action      VARCHAR(32)     NOT NULL,
            target      VARCHAR(255),
            result      VARCHAR(20)     NOT NULL,
            detail      JSONB           NOT NULL DEFAULT '{}'::jsonb,
            created_at  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_audit_result CHECK (
                result IN ('success', 'rejected', 'error', 'unauthorized')
            )
        );
    """)
    op.execute("CREATE INDEX idx_audit_target ON admin_audit_log (target, created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_admin_audit_log_append_only
            BEFORE UPDATE OR DELETE ON admin_audit_log
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)

    op.execute("""
        CREATE TABLE ops_alerts (
            id          BIGSERIAL       PRIMARY KEY,
            alert_type  VARCHAR(40)     NOT NULL,
            severity    VARCHAR(10)     NOT NULL,
            order_id    VARCHAR(32),
            message     TEXT            NOT NULL,
            data        JSONB           NOT NULL DEFAULT '{}'::jsonb,
            resolved    BOOLEAN         NOT NULL DEFAULT FALSE,
            resolved_by VARCHAR(128),
            resolved_at TIMESTAMPTZ,
            created_at  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_alerts_type     CHECK (
                alert_type IN ('unmapped_provider_event', 'compensation_failed',
                               'insufficient_funds', 'release_failed')
            ),
            CONSTRAINT ck_alerts_severity CHECK (severity IN ('info', 'warning', 'critical'))
        );
    """)
    op.execute("""
        CREATE INDEX idx_alerts_open
        ON ops_alerts (alert_type, created_at)
        WHERE resolved = FALSE;
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ops_alerts CASCADE;")
    op.execute("DROP TABLE IF EXISTS admin_audit_log CASCADE;")
