"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CHAR,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    UniqueConstraint,
)

# Metadata for the main appointments database
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    # Identity: partition by insured, range by time-ordered ULID
    Column("insured_id", CHAR(5), nullable=False),
    Column("appointment_id", CHAR(26), nullable=False),
    # Requested slot
    Column("schedule_id", Integer, nullable=False),
    Column("country_iso", CHAR(2), nullable=False),
    # Optional schedule details
    Column("center_id", Integer, nullable=True),
    Column("specialty_id", Integer, nullable=True),
    Column("medic_id", Integer, nullable=True),
    Column("slot_datetime", DateTime(timezone=True), nullable=True),
    # Status management
    Column("status", String(16), nullable=False, server_default="pending"),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    # Constraints
    PrimaryKeyConstraint("insured_id", "appointment_id", name="appointments_pkey"),
    UniqueConstraint("appointment_id", name="appointments_appointment_id_key"),
    UniqueConstraint("insured_id", "schedule_id", name="appointments_insured_schedule_key"),
    CheckConstraint(
        "status IN ('pending', 'completed', 'failed')",
        name="appointments_status_check",
    ),
    CheckConstraint("country_iso IN ('PE', 'CL')", name="appointments_country_check"),
    Index("ix_appointments_status_created_at", "status", "created_at"),
)
