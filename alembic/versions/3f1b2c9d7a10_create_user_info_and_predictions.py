"""create_user_info_and_predictions

Revision ID: 3f1b2c9d7a10
Revises:
Create Date: 2026-10-19 10:12:41.208315

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1b2c9d7a10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create user_info and predictions tables."""
    op.create_table(
        "user_info",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("in_training", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("trained", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("model_version_id", sa.String(length=255), nullable=True),
        sa.Column("usage_counter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "instance_class", sa.String(length=50), nullable=False, server_default="person"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("usage_counter >= 0", name="ck_user_info_usage_counter_nonnegative"),
    )

    op.create_table(
        "predictions",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("output_url", sa.String(), nullable=True),
        sa.Column("artifact_path", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_info.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('starting', 'processing', 'succeeded', 'failed')",
            name="ck_predictions_status",
        ),
    )
    op.create_index("ix_predictions_user_id", "predictions", ["user_id"])
    op.create_index("ix_predictions_status", "predictions", ["status"])


def downgrade() -> None:
    """Drop predictions and user_info tables."""
    op.drop_index("ix_predictions_status", table_name="predictions")
    op.drop_index("ix_predictions_user_id", table_name="predictions")
    op.drop_table("predictions")
    op.drop_table("user_info")
