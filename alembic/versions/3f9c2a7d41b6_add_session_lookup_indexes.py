"""add session lookup indexes

Revision ID: 3f9c2a7d41b6
Revises: base_0001
Create Date: 2026-10-02 16:48:27.903315

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9c2a7d41b6"
down_revision: Union[str, Sequence[str], None] = "base_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_index(
        "ix_assessment_sessions_lookup",
        "assessment_sessions",
        ["assessment_id", "user_id", "status"],
    )
    # one open attempt per candidate and assessment
    op.create_index(
        "uq_assessment_sessions_open_attempt",
        "assessment_sessions",
        ["assessment_id", "user_id"],
        unique=True,
        sqlite_where=sa.text("status = 'in_progress'"),
        postgresql_where=sa.text("status = 'in_progress'"),
    )


def downgrade() -> None:
    op.drop_index("uq_assessment_sessions_open_attempt", table_name="assessment_sessions")
    op.drop_index("ix_assessment_sessions_lookup", table_name="assessment_sessions")
