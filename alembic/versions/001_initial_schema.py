"""Initial schema — the generic ``documents`` table.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── documents ───────────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column(
            "collection",
            sa.String,
            primary_key=True,
            comment="Slash-joined collection path",
        ),
        sa.Column("doc_id", sa.String, primary_key=True),
        sa.Column("data", postgresql.JSONB, nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("documents")
