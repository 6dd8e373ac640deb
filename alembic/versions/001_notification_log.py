"""Notification log schema.

Revision ID: 001_notification_log
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_notification_log"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=20), nullable=False, server_default="normal"),
        sa.Column("related_entity_type", sa.String(length=50), nullable=True),
        sa.Column("related_entity_id", sa.String(length=100), nullable=True),
        sa.Column("resend_of_id", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(["resend_of_id"], ["notification_log.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_log_id", "notification_log", ["id"])
    op.create_index("ix_notification_log_channel", "notification_log", ["channel"])
    op.create_index("ix_notification_log_recipient", "notification_log", ["recipient"])
    op.create_index("ix_notification_log_status", "notification_log", ["status"])
    op.create_index(
        "ix_notification_log_related_entity_id", "notification_log", ["related_entity_id"]
    )
    op.create_index("ix_notification_log_resend_of_id", "notification_log", ["resend_of_id"])


def downgrade() -> None:
    op.drop_index("ix_notification_log_resend_of_id", table_name="notification_log")
    op.drop_index("ix_notification_log_related_entity_id", table_name="notification_log")
    op.drop_index("ix_notification_log_status", table_name="notification_log")
    op.drop_index("ix_notification_log_recipient", table_name="notification_log")
    op.drop_index("ix_notification_log_channel", table_name="notification_log")
    op.drop_index("ix_notification_log_id", table_name="notification_log")
    op.drop_table("notification_log")
