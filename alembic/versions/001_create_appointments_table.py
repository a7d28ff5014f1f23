"""Create appointments table.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "appointments",
        sa.Column("insured_id", sa.CHAR(length=5), nullable=False),
        sa.Column("appointment_id", sa.CHAR(length=26), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("country_iso", sa.CHAR(length=2), nullable=False),
        sa.Column("center_id", sa.Integer(), nullable=True),
        sa.Column("specialty_id", sa.Integer(), nullable=True),
        sa.Column("medic_id", sa.Integer(), nullable=True),
        sa.Column("slot_datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("insured_id", "appointment_id", name="appointments_pkey"),
        sa.UniqueConstraint("appointment_id", name="appointments_appointment_id_key"),
        sa.UniqueConstraint("insured_id", "schedule_id", name="appointments_insured_schedule_key"),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint("country_iso IN ('PE', 'CL')", name="appointments_country_check"),
    )

    # Reconciliation sweep: pending appointments by age
    op.create_index(
        "ix_appointments_status_created_at",
        "appointments",
        ["status", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_appointments_status_created_at", table_name="appointments")
    op.drop_table("appointments")
