"""Appointment status history table model using SQLAlchemy Core."""

from sqlalchemy import Boolean, Column, Index, MetaData, String, Table, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

metadata = MetaData()

appointment_status_history = Table(
    "appointment_status_history",
    metadata,
    Column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column("appointment_id", UUID(as_uuid=False), nullable=False),
    Column("tenant_id", UUID(as_uuid=False), nullable=False),
    Column("status", Text, nullable=False),
    Column("previous_status", Text, nullable=True),
    # Who changed it
    Column("changed_by_user_id", UUID(as_uuid=False), nullable=True),
    Column("changed_by_role", String(50), nullable=True),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    Column("automated", Boolean, nullable=False, server_default="false"),
    Column("change_source", String(50), nullable=True),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Index("idx_status_history_appointment", "appointment_id", "created_at"),
)
