"""Create scheduling tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=False),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        postgresql.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Service catalog
    op.create_table(
        "services",
        _id_column(),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        _created_at_column(),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("idx_services_tenant", "services", ["tenant_id"])

    # Appointments
    op.create_table(
        "appointments",
        _id_column(),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column(
            "service_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("services.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("member_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column(
            "original_appointment_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("appointments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "rescheduled_from_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("appointments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reschedule_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_rebook", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("rescheduled_at", postgresql.TIMESTAMP(timezone=False), nullable=True),
        sa.Column("rescheduled_by", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("reschedule_reason", sa.Text(), nullable=True),
        _created_at_column(),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'cancelled', 'no_show')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint("start_time < end_time", name="appointments_time_order_check"),
        sa.CheckConstraint("reschedule_count >= 0", name="appointments_reschedule_count_check"),
    )
    op.create_index(
        "idx_appointments_doctor_slot",
        "appointments",
        ["tenant_id", "doctor_id", "appointment_date"],
    )
    op.create_index(
        "idx_appointments_member_slot",
        "appointments",
        ["tenant_id", "member_id", "appointment_date"],
    )
    op.create_index("idx_appointments_original", "appointments", ["original_appointment_id"])

    # Status history
    op.create_table(
        "appointment_status_history",
        _id_column(),
        sa.Column(
            "appointment_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("appointments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("previous_status", sa.Text(), nullable=True),
        sa.Column("changed_by_user_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("changed_by_role", sa.String(50), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("automated", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("change_source", sa.String(50), nullable=True),
        _created_at_column(),
    )
    op.create_index(
        "idx_status_history_appointment",
        "appointment_status_history",
        ["appointment_id", "created_at"],
    )

    # Weekly availability and breaks
    for table_name in ("provider_availability", "provider_breaks"):
        extra_columns = (
            [sa.Column("break_type", sa.String(30), nullable=False, server_default="lunch")]
            if table_name == "provider_breaks"
            else []
        )
        op.create_table(
            table_name,
            _id_column(),
            sa.Column("tenant_id", postgresql.UUID(as_uuid=False), nullable=False),
            sa.Column("provider_kind", sa.String(20), nullable=False),
            sa.Column("provider_id", postgresql.UUID(as_uuid=False), nullable=False),
            sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            *extra_columns,
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
            _created_at_column(),
            sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name=f"{table_name}_day_check"),
            sa.CheckConstraint("start_time < end_time", name=f"{table_name}_time_check"),
            sa.CheckConstraint(
                "provider_kind IN ('doctor', 'member')", name=f"{table_name}_kind_check"
            ),
        )
        op.create_index(
            f"idx_{table_name}_provider",
            table_name,
            ["tenant_id", "provider_kind", "provider_id"],
        )

    # Notification outbox
    op.create_table(
        "appointment_notifications",
        _id_column(),
        sa.Column(
            "appointment_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("appointments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("channels", postgresql.ARRAY(sa.Text()), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("sent_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        _created_at_column(),
        sa.CheckConstraint(
            "kind IN ('booking', 'reschedule', 'rebook')",
            name="appointment_notifications_kind_check",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'failed')",
            name="appointment_notifications_status_check",
        ),
    )
    op.create_index(
        "idx_appointment_notifications_pending",
        "appointment_notifications",
        ["status", "created_at"],
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("appointment_notifications")
    op.drop_table("provider_breaks")
    op.drop_table("provider_availability")
    op.drop_table("appointment_status_history")
    op.drop_table("appointments")
    op.drop_table("services")
