"""Country database table model using SQLAlchemy Core.

The same table is created in every country database (PE, CL).
"""

from sqlalchemy import (
    CHAR,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)

# Metadata for country databases
metadata = MetaData()

country_appointments = Table(
    "country_appointments",
    metadata,
    # Primary key doubles as the idempotency key for redelivered messages
    Column("appointment_id", CHAR(26), primary_key=True),
    Column("insured_id", CHAR(5), nullable=False, index=True),
    Column("schedule_id", Integer, nullable=False, index=True),
    Column("center_id", Integer, nullable=True),
    Column("specialty_id", Integer, nullable=True),
    Column("medic_id", Integer, nullable=True),
    Column("slot_datetime", DateTime(timezone=True), nullable=True, index=True),
    Column("country_iso", CHAR(2), nullable=False),
    Column("status", String(16), nullable=False, server_default="confirmed"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("insured_id", "schedule_id", name="country_appointments_insured_schedule_key"),
)
