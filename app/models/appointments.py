"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Index,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

# Metadata for all tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # Ownership / references
    Column("tenant_id", UUID(as_uuid=False), nullable=False),
    Column("patient_id", UUID(as_uuid=False), nullable=True),
    Column("service_id", UUID(as_uuid=False), nullable=True),
    Column("doctor_id", UUID(as_uuid=False), nullable=True),
    Column("member_id", UUID(as_uuid=False), nullable=True),
    # Slot, facility-local wall-clock
    Column("appointment_date", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    # Status management
    Column(
        "status",
        Text,
        nullable=False,
        server_default="pending",
    ),
    Column("notes", Text, nullable=True),
    Column("total_amount", Numeric(10, 2), nullable=True),
    # Reschedule lineage
    Column("original_appointment_id", UUID(as_uuid=False), nullable=True),
    Column("rescheduled_from_id", UUID(as_uuid=False), nullable=True),
    Column("reschedule_count", Integer, nullable=False, server_default="0"),
    Column("is_rebook", Boolean, nullable=False, server_default="false"),
    Column("rescheduled_at", TIMESTAMP(timezone=False), nullable=True),
    Column("rescheduled_by", UUID(as_uuid=False), nullable=True),
    Column("reschedule_reason", Text, nullable=True),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint("start_time < end_time", name="appointments_time_order_check"),
    CheckConstraint("reschedule_count >= 0", name="appointments_reschedule_count_check"),
    # Indexes
    Index("idx_appointments_doctor_slot", "tenant_id", "doctor_id", "appointment_date"),
    Index("idx_appointments_member_slot", "tenant_id", "member_id", "appointment_date"),
    Index("idx_appointments_original", "original_appointment_id"),
)
