"""Provider weekly availability and break tables using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Index,
    MetaData,
    SmallInteger,
    String,
    Table,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

metadata = MetaData()

# day_of_week: 0 = Sunday ... 6 = Saturday
provider_availability = Table(
    "provider_availability",
    metadata,
    Column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column("tenant_id", UUID(as_uuid=False), nullable=False),
    Column("provider_kind", String(20), nullable=False),
    Column("provider_id", UUID(as_uuid=False), nullable=False),
    Column("day_of_week", SmallInteger, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="true"),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint("day_of_week BETWEEN 0 AND 6", name="provider_availability_day_check"),
    CheckConstraint("start_time < end_time", name="provider_availability_time_check"),
    CheckConstraint(
        "provider_kind IN ('doctor', 'member')", name="provider_availability_kind_check"
    ),
    Index("idx_provider_availability_provider", "tenant_id", "provider_kind", "provider_id"),
)

provider_breaks = Table(
    "provider_breaks",
    metadata,
    Column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column("tenant_id", UUID(as_uuid=False), nullable=False),
    Column("provider_kind", String(20), nullable=False),
    Column("provider_id", UUID(as_uuid=False), nullable=False),
    Column("day_of_week", SmallInteger, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("break_type", String(30), nullable=False, server_default="lunch"),
    Column("is_active", Boolean, nullable=False, server_default="true"),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint("day_of_week BETWEEN 0 AND 6", name="provider_breaks_day_check"),
    CheckConstraint("start_time < end_time", name="provider_breaks_time_check"),
    CheckConstraint("provider_kind IN ('doctor', 'member')", name="provider_breaks_kind_check"),
    Index("idx_provider_breaks_provider", "tenant_id", "provider_kind", "provider_id"),
)
