"""create_unit_table

Revision ID: b1c2d3e4f5a6
Revises:
Create Date: 2026-10-19 09:12:40.118230

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b1c2d3e4f5a6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "unit",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("lot", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ready"),
        sa.Column("location", sa.String(length=16), nullable=False, server_default="office"),
        sa.Column("battery_level", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("charging_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_charged_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_disconnected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deep_charge", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("needs_manual_disconnection", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("clinic_name", sa.String(length=255), nullable=True),
        sa.Column("clinic_city", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("lot"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("unit", if_exists=True)
