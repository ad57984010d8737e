"""Allow cancellation notifications in the outbox.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CONSTRAINT = "appointment_notifications_kind_check"


def upgrade() -> None:
    """Upgrade schema."""
    op.drop_constraint(CONSTRAINT, "appointment_notifications", type_="check")
    op.create_check_constraint(
        CONSTRAINT,
        "appointment_notifications",
        "kind IN ('booking', 'reschedule', 'rebook', 'cancellation')",
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DELETE FROM appointment_notifications WHERE kind = 'cancellation'")
    op.drop_constraint(CONSTRAINT, "appointment_notifications", type_="check")
    op.create_check_constraint(
        CONSTRAINT,
        "appointment_notifications",
        "kind IN ('booking', 'reschedule', 'rebook')",
    )
