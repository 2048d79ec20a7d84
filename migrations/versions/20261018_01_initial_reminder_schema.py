"""users, reminders and notifications

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("plan_type", sa.String(16), nullable=False, server_default="free"),
        sa.Column("welcomed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)

    op.create_table(
        "reminders",
        sa.Column("reminder_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("reminder_text", sa.Text(), nullable=False),
        sa.Column("target_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("notify_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("lead_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("channel", sa.String(16), nullable=False, server_default="sms"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("notify_at <= target_at", name="ck_reminders_notify_before_target"),
    )
    op.create_index("ix_reminders_user_id", "reminders", ["user_id"])
    op.create_index("ix_reminders_notify_at", "reminders", ["notify_at"])
    op.create_index("ix_reminders_status", "reminders", ["status"])

    op.create_table(
        "notifications",
        sa.Column("notification_id", sa.String(36), primary_key=True),
        sa.Column("reminder_id", sa.String(36), sa.ForeignKey("reminders.reminder_id"), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False, server_default="sms"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("delivery_id", sa.String(128), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_reminder_id", "notifications", ["reminder_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_reminder_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_reminders_status", table_name="reminders")
    op.drop_index("ix_reminders_notify_at", table_name="reminders")
    op.drop_index("ix_reminders_user_id", table_name="reminders")
    op.drop_table("reminders")
    op.drop_index("ix_users_phone", table_name="users")
    op.drop_table("users")
