"""add seq to test_results

Revision ID: 8c2e4a61d9f3
Revises: 3b1f9c2d7a10
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8c2e4a61d9f3"
down_revision: str | Sequence[str] | None = "3b1f9c2d7a10"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # insert order breaks ties between attempts stored with the same created_at
    op.add_column(
        "test_results",
        sa.Column("seq", sa.BigInteger(), sa.Identity(), nullable=False),
    )


def downgrade() -> None:
    op.drop_column("test_results", "seq")
