"""Outbox of patient notifications about scheduling changes."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TIMESTAMP, UUID

metadata = MetaData()

appointment_notifications = Table(
    "appointment_notifications",
    metadata,
    Column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column("appointment_id", UUID(as_uuid=False), nullable=False),
    Column("tenant_id", UUID(as_uuid=False), nullable=False),
    Column("kind", String(20), nullable=False),
    Column("channels", ARRAY(Text), nullable=False),
    Column("payload", JSONB, nullable=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("sent_at", TIMESTAMP(timezone=True), nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("retry_count", Integer, nullable=False, server_default="0"),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint(
        "kind IN ('booking', 'reschedule', 'rebook', 'cancellation')",
        name="appointment_notifications_kind_check",
    ),
    CheckConstraint(
        "status IN ('pending', 'sent', 'failed')",
        name="appointment_notifications_status_check",
    ),
    Index("idx_appointment_notifications_pending", "status", "created_at"),
)
