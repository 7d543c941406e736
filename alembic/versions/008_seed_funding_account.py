"""008: seed the default funding account

Revision ID: 008
Revises: 007
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op

revision: str = "008"
down_revision: Union[str, None] = "007"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Starts empty; operators top it up through POST /funding/transfers. $50 margin.
    op.execute("""
        INSERT INTO funding_accounts (name, available_balance, reserved_balance,
                                      safety_margin, is_default, is_active)
        VALUES ('zma-primary', 0, 0, 5000, TRUE, TRUE);
    """)


def downgrade() -> None:
    op.execute("DELETE FROM funding_accounts WHERE name = 'zma-primary';")
