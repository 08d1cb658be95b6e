"""Add the DISPATCHING interaction status used to claim rows before delivery."""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op


revision: str = "20261017_02_interaction_dispatching_status"
down_revision: Union[str, None] = "20261017_01_initial_cashback_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TYPE interaction_status ADD VALUE IF NOT EXISTS 'DISPATCHING'")
    op.create_index(
        "ix_interactions_status_scheduled_for",
        "interactions",
        ["status", "scheduled_for"],
    )


def downgrade() -> None:
    op.drop_index("ix_interactions_status_scheduled_for", table_name="interactions")
    # Postgres enum value removal is not supported without recreating the type.
