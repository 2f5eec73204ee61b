"""inspections_messages_outbox_claims

Add inspections and messages, and the claimed_at column that lets
concurrent outbox drainers claim rows.

Revision ID: 8b3f0c6d2e17
Revises: 5d1e7a2c9b40
Create Date: 2026-10-18 15:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "8b3f0c6d2e17"
down_revision = "5d1e7a2c9b40"
branch_labels = None
depends_on = None


def _table_names(bind) -> set[str]:
    insp = sa.inspect(bind)
    return set(insp.get_table_names())


def _columns(bind, table_name: str) -> set[str]:
    insp = sa.inspect(bind)
    return {c["name"] for c in insp.get_columns(table_name)}


def upgrade():
    bind = op.get_bind()
    tables = _table_names(bind)

    if "inspections" not in tables:
        op.create_table(
            "inspections",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("permit_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=100), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="NOT_SCHEDULED"),
            sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("inspector_name", sa.String(length=200), nullable=True),
            sa.Column("inspector_phone", sa.String(length=50), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("result", sa.Text(), nullable=True),
            sa.Column("created_by_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["permit_id"], ["permits.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "idx_inspection_permit_scheduled", "inspections", ["permit_id", "scheduled_date"],
        )

    if "messages" not in tables:
        op.create_table(
            "messages",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("permit_id", sa.String(length=36), nullable=False),
            sa.Column("sender_user_id", sa.String(length=36), nullable=True),
            sa.Column("sender_name", sa.String(length=200), nullable=True),
            sa.Column("sender_email", sa.String(length=255), nullable=True),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["permit_id"], ["permits.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["sender_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_message_permit_created", "messages", ["permit_id", "created_at"])

    if "notification_outbox" in tables and "claimed_at" not in _columns(bind, "notification_outbox"):
        with op.batch_alter_table("notification_outbox") as batch_op:
            batch_op.add_column(sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True))


def downgrade():
    bind = op.get_bind()
    tables = _table_names(bind)

    if "notification_outbox" in tables and "claimed_at" in _columns(bind, "notification_outbox"):
        with op.batch_alter_table("notification_outbox") as batch_op:
            batch_op.drop_column("claimed_at")

    for table in ("messages", "inspections"):
        if table in tables:
            op.drop_table(table)
