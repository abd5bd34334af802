"""form delegation workflow schema

Revision ID: 0001a7f3c2d9
Revises:
Create Date: 2026-10-17 09:12:40.118203

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001a7f3c2d9'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String(200), nullable=False, unique=True),
        sa.Column("full_name", sa.String(200)),
        sa.Column("designation", sa.String(120)),
        sa.Column("lab_name", sa.String(200)),
        sa.Column("role", sa.String(50)),
        sa.Column("avatar_url", sa.String(500)),
        sa.Column("status", sa.String(20)),
        sa.Column("created_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
    )
    op.create_index("ix_users_lab_name", "users", ["lab_name"])

    op.create_table(
        "form_templates",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("fields", sa.JSON, nullable=False),
        sa.Column(
            "created_by",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("shared_with_labs", sa.JSON),
        sa.Column("shared_with_users", sa.JSON),
        sa.Column("is_public", sa.Boolean),
        sa.Column("allow_multiple_submissions", sa.Boolean),
        sa.Column("allow_delegation", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_form_templates_created_by", "form_templates", ["created_by"])

    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer,
            sa.ForeignKey("form_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("lab_name", sa.String(200), nullable=False),
        sa.Column("submitted_by", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_submissions_template_id", "submissions", ["template_id"])
    op.create_index("ix_submissions_submitted_by", "submissions", ["submitted_by"])

    op.create_table(
        "submission_movements",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "submission_id",
            sa.Integer,
            sa.ForeignKey("submissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("performed_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(60), nullable=False),
        sa.Column("remarks", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_submission_movements_submission_id", "submission_movements", ["submission_id"])

    # Custody ledger. Rows are append-only; identity columns are guarded
    # in the ORM (see refportal.models.workflow).
    op.create_table(
        "form_assignments",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer,
            sa.ForeignKey("form_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("assigned_to", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_by", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "data_id",
            sa.Integer,
            sa.ForeignKey("submissions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column(
            "parent_assignment_id",
            sa.Integer,
            sa.ForeignKey("form_assignments.id"),
            nullable=True,
        ),
        sa.Column("delegation_chain", sa.JSON, nullable=False),
        sa.Column("origin", sa.String(20), nullable=True),
        sa.Column("last_action", sa.String(50), nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("remarks", sa.Text, nullable=True),
        sa.Column("instructions", sa.Text, nullable=True),
        sa.Column("is_finalized", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_form_assignments_template_id", "form_assignments", ["template_id"])
    op.create_index("ix_form_assignments_data_id", "form_assignments", ["data_id"])
    op.create_index("ix_form_assignments_parent_assignment_id", "form_assignments", ["parent_assignment_id"])
    op.create_index("ix_assignment_assignee_status", "form_assignments", ["assigned_to", "status"])
    op.create_index("ix_assignment_template_assignee", "form_assignments", ["template_id", "assigned_to"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "recipient_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text),
        sa.Column("ref_type", sa.String(40)),
        sa.Column("ref_id", sa.Integer, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])

    op.create_table(
        "email_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("recipient_email", sa.String(255), nullable=False),
        sa.Column("recipient_name", sa.String(150), nullable=True),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("template_name", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20)),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("entity_type", sa.String(40), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("action", sa.String(60), nullable=False),
        sa.Column(
            "actor_user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("diff_json", sa.Text),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_actor", "audit_logs", ["actor_user_id"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    op.create_table(
        "system_configs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("value", sa.JSON, nullable=True),
        sa.Column("description", sa.String(500)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )


def downgrade():
    op.drop_table("system_configs")
    op.drop_table("audit_logs")
    op.drop_table("email_logs")
    op.drop_table("notifications")
    op.drop_table("form_assignments")
    op.drop_table("submission_movements")
    op.drop_table("submissions")
    op.drop_table("form_templates")
    op.drop_table("users")
