"""Create worker verification tables

Revision ID: v1e2r3i4
Revises:
Create Date: 2026-10-16

Creates the tables behind worker credential verification:
- workers: verification-derived worker status
- verification_records: one row per provider check, superseded rather than deleted
- verification_documents: evidence URLs attached to a record
- verification_alerts: append-only alerts on failure, expiry and status changes
"""

from typing import Sequence, Union

from alembic import op
from sqlalchemy import inspect
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "v1e2r3i4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


verification_type = sa.Enum(
    "IDENTITY", "VEVO", "WWCC", "NDIS", "FIRST_AID", "ABN", "TFN",
    name="verificationtype",
)
verification_status = sa.Enum(
    "PENDING", "IN_PROGRESS", "VERIFIED", "FAILED", "EXPIRED", "SUSPENDED",
    name="verificationstatus",
)
worker_status = sa.Enum(
    "ONBOARDING_IN_PROGRESS", "VERIFIED", "REJECTED", "SUSPENDED",
    name="workerstatus",
)
onboarding_status = sa.Enum("IN_PROGRESS", "COMPLETED", name="onboardingstatus")
alert_type = sa.Enum(
    "VERIFICATION_EXPIRED", "VERIFICATION_FAILED", "STATUS_CHANGED", "EXPIRING_SOON",
    name="alerttype",
)


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    """Create verification tables."""
    if not table_exists("workers"):
        op.create_table(
            "workers",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("status", worker_status, nullable=False),
            sa.Column("onboarding_status", onboarding_status, nullable=False),
            sa.Column("required_verification_types", sa.JSON(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=True,
            ),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workers_user_id", "workers", ["user_id"])

    if not table_exists("verification_records"):
        op.create_table(
            "verification_records",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("worker_id", sa.String(), nullable=False),
            sa.Column("verification_type", verification_type, nullable=False),
            sa.Column("provider", sa.String(), nullable=False),
            sa.Column("status", verification_status, nullable=False),
            sa.Column("provider_request_id", sa.String(), nullable=True),
            sa.Column("submitted_data", sa.JSON(), nullable=True),
            sa.Column("provider_response", sa.JSON(), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column(
                "consecutive_poll_failures",
                sa.Integer(),
                nullable=False,
                server_default="0",
            ),
            sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("supersedes_id", sa.String(), nullable=True),
            sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=True,
            ),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["supersedes_id"], ["verification_records.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        # One current record per (worker, type)
        op.create_index(
            "uq_verification_records_current_pair",
            "verification_records",
            ["worker_id", "verification_type"],
            unique=True,
            postgresql_where=sa.text("superseded_at IS NULL"),
        )
        op.create_index(
            "idx_verification_records_provider_request",
            "verification_records",
            ["provider_request_id"],
        )
        op.create_index(
            "idx_verification_records_status", "verification_records", ["status"]
        )
        op.create_index(
            "idx_verification_records_expires_at", "verification_records", ["expires_at"]
        )

    if not table_exists("verification_documents"):
        op.create_table(
            "verification_documents",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("verification_record_id", sa.String(), nullable=False),
            sa.Column("document_type", sa.String(), nullable=False),
            sa.Column("file_url", sa.Text(), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column(
                "uploaded_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=True,
            ),
            sa.ForeignKeyConstraint(
                ["verification_record_id"],
                ["verification_records.id"],
                ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "idx_verification_documents_record",
            "verification_documents",
            ["verification_record_id"],
        )

    if not table_exists("verification_alerts"):
        op.create_table(
            "verification_alerts",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("worker_id", sa.String(), nullable=False),
            sa.Column("verification_record_id", sa.String(), nullable=True),
            sa.Column("alert_type", alert_type, nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=True,
            ),
            sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["verification_record_id"],
                ["verification_records.id"],
                ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "idx_verification_alerts_worker", "verification_alerts", ["worker_id"]
        )
        op.create_index(
            "idx_verification_alerts_record_type",
            "verification_alerts",
            ["verification_record_id", "alert_type"],
        )


def downgrade() -> None:
    """Drop verification tables."""
    op.drop_table("verification_alerts")
    op.drop_table("verification_documents")
    op.drop_table("verification_records")
    op.drop_table("workers")

    bind = op.get_bind()
    for enum_type in (
        alert_type,
        onboarding_status,
        worker_status,
        verification_status,
        verification_type,
    ):
        enum_type.drop(bind, checkfirst=True)
