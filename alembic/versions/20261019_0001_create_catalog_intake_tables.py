"""Create supplier, submission, feedback, and template tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

_INDEXES: tuple[tuple[str, str, list[str]], ...] = (
    ("ix_submissions_group_id", "submissions", ["group_id"]),
    ("ix_submissions_supplier_id", "submissions", ["supplier_id"]),
    ("ix_submissions_template_id", "submissions", ["template_id"]),
    ("ix_submissions_processing_status", "submissions", ["processing_status"]),
    ("ix_submissions_validation_status", "submissions", ["validation_status"]),
    ("ix_submissions_created_at", "submissions", ["created_at"]),
    ("ix_processing_log_entries_submission_id", "processing_log_entries", ["submission_id"]),
    ("ix_processing_log_entries_stage", "processing_log_entries", ["stage"]),
    ("ix_feedback_records_template_id", "feedback_records", ["template_id"]),
    ("ix_feedback_records_supplier_id", "feedback_records", ["supplier_id"]),
    ("ix_feedback_records_category", "feedback_records", ["category"]),
    ("ix_template_changes_template_id", "template_changes", ["template_id"]),
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create all catalog intake tables and supporting indexes."""

    alembic_op.create_table(
        "suppliers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("contact_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("preferred_categories", sa.JSON(), nullable=False),
        sa.Column("performance_metrics", sa.JSON(), nullable=True),
        sa.Column("metrics_computed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )

    alembic_op.create_table(
        "submissions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("external_message_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("group_id", sa.String(length=255), nullable=False),
        sa.Column(
            "supplier_id", sa.String(length=36), sa.ForeignKey("suppliers.id"), nullable=False
        ),
        sa.Column("template_id", sa.String(length=64), nullable=True),
        sa.Column("content_type", sa.String(length=32), nullable=False),
        sa.Column("raw_content", sa.Text(), nullable=False),
        sa.Column("media_locator", sa.String(length=1024), nullable=True),
        sa.Column("processing_status", sa.String(length=32), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("extracted_data", sa.JSON(), nullable=True),
        sa.Column("extraction_confidence", sa.Float(), nullable=True),
        sa.Column("field_errors", sa.JSON(), nullable=False),
        sa.Column("validation_status", sa.String(length=32), nullable=False),
        sa.Column("validated_by", sa.String(length=255), nullable=True),
        sa.Column("validation_notes", sa.Text(), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("product_reference", sa.String(length=255), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    alembic_op.create_table(
        "processing_log_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "submission_id",
            sa.String(length=36),
            sa.ForeignKey("submissions.id"),
            nullable=False,
        ),
        sa.Column("stage", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("stage_metadata", sa.JSON(), nullable=True),
        _created_at(),
    )

    alembic_op.create_table(
        "feedback_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "submission_id",
            sa.String(length=36),
            sa.ForeignKey("submissions.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("template_id", sa.String(length=64), nullable=True),
        sa.Column("supplier_id", sa.String(length=36), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("subcategory", sa.String(length=64), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False),
        sa.Column("severity", sa.String(length=32), nullable=False),
        sa.Column("suggested_improvement", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        _created_at(),
    )

    alembic_op.create_table(
        "extraction_templates",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=32), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=False),
        sa.Column("examples", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    alembic_op.create_table(
        "template_changes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("template_id", sa.String(length=64), nullable=False),
        sa.Column("proposal_type", sa.String(length=32), nullable=False),
        sa.Column("affected_field", sa.String(length=128), nullable=True),
        sa.Column("before", sa.JSON(), nullable=False),
        sa.Column("after", sa.JSON(), nullable=False),
        sa.Column("applied_by", sa.String(length=255), nullable=True),
        _created_at(),
    )

    alembic_op.create_table(
        "template_health_snapshots",
        sa.Column("template_id", sa.String(length=64), primary_key=True),
        sa.Column("health", sa.String(length=32), nullable=False),
        sa.Column("success_rate", sa.Float(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
    )

    for name, table, columns in _INDEXES:
        alembic_op.create_index(name, table, columns)


def downgrade() -> None:
    """Drop all catalog intake tables and related indexes."""

    for name, table, _ in reversed(_INDEXES):
        alembic_op.drop_index(name, table_name=table)
    alembic_op.drop_table("template_health_snapshots")
    alembic_op.drop_table("template_changes")
    alembic_op.drop_table("extraction_templates")
    alembic_op.drop_table("feedback_records")
    alembic_op.drop_table("processing_log_entries")
    alembic_op.drop_table("submissions")
    alembic_op.drop_table("suppliers")
