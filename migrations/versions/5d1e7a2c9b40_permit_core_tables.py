"""permit_core_tables

Create users, permits, permit_parties, milestones, documents, photos,
photo_shares, activity_logs, workflow_templates, notifications and
notification_outbox.

Revision ID: 5d1e7a2c9b40
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5d1e7a2c9b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "permits" not in existing_tables:
        op.create_table(
            "permits",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("creator_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="DRAFT"),
            sa.Column("subcode_type", sa.String(length=30), nullable=False),
            sa.Column("property_id", sa.String(length=36), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["creator_id"], ["users.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_permit_creator", "permits", ["creator_id"])
        op.create_index("idx_permit_property", "permits", ["property_id"])

    if "permit_parties" not in existing_tables:
        op.create_table(
            "permit_parties",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("permit_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False),
            sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("added_by_id", sa.String(length=36), nullable=True),
            sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["permit_id"], ["permits.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["added_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("permit_id", "user_id", name="uq_permit_party_user"),
        )
        op.create_index("ix_permit_parties_permit_id", "permit_parties", ["permit_id"])
        op.create_index("idx_party_user", "permit_parties", ["user_id"])

    if "milestones" not in existing_tables:
        op.create_table(
            "milestones",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("permit_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["permit_id"], ["permits.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_milestone_permit_order", "milestones", ["permit_id", "sort_order"])

    if "documents" not in existing_tables:
        op.create_table(
            "documents",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("permit_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("file_url", sa.String(length=1000), nullable=False),
            sa.Column("content_type", sa.String(length=100), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=True),
            sa.Column("uploaded_by_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["permit_id"], ["permits.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["uploaded_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_documents_permit_id", "documents", ["permit_id"])

    if "photos" not in existing_tables:
        op.create_table(
            "photos",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("permit_id", sa.String(length=36), nullable=False),
            sa.Column("file_url", sa.String(length=1000), nullable=False),
            sa.Column("caption", sa.String(length=500), nullable=True),
            sa.Column("uploaded_by_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["permit_id"], ["permits.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["uploaded_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_photos_permit_id", "photos", ["permit_id"])

    if "photo_shares" not in existing_tables:
        op.create_table(
            "photo_shares",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("photo_id", sa.String(length=36), nullable=False),
            sa.Column("recipient_email", sa.String(length=200), nullable=False),
            sa.Column("recipient_name", sa.String(length=200), nullable=True),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["photo_id"], ["photos.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_photo_shares_photo_id", "photo_shares", ["photo_id"])

    if "activity_logs" not in existing_tables:
        # permit_id carries no FK: the trail outlives a deleted permit
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("description", sa.String(length=1000), nullable=False),
            sa.Column("permit_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_permit_feed", "activity_logs", ["permit_id", "created_at", "id"])
        op.create_index("idx_activity_entity", "activity_logs", ["entity_type", "entity_id"])
        op.create_index("idx_activity_actor", "activity_logs", ["actor_user_id"])

    if "workflow_templates" not in existing_tables:
        op.create_table(
            "workflow_templates",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.String(length=2000), nullable=True),
            sa.Column("permit_type", sa.String(length=30), nullable=False, server_default=""),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("steps", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "uq_workflow_default_per_type",
            "workflow_templates",
            ["permit_type"],
            unique=True,
            postgresql_where=sa.text("is_default IS TRUE"),
            sqlite_where=sa.text("is_default = 1"),
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("body", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=30), nullable=False, server_default="SYSTEM"),
            sa.Column("permit_id", sa.String(length=36), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_permit_id", "notifications", ["permit_id"])

    if "notification_outbox" not in existing_tables:
        op.create_table(
            "notification_outbox",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("kind", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("permit_id", sa.String(length=36), nullable=True),
            sa.Column("payload_json", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.String(length=1000), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_outbox_status_created", "notification_outbox", ["status", "created_at"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "notification_outbox",
        "notifications",
        "workflow_templates",
        "activity_logs",
        "photo_shares",
        "photos",
        "documents",
        "milestones",
        "permit_parties",
        "permits",
        "users",
    ):
        if table in existing_tables:
            op.drop_table(table)
