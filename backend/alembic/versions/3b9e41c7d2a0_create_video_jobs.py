"""create_video_jobs

Revision ID: 3b9e41c7d2a0
Revises:
Create Date: 2026-10-19 09:12:41.318206

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9e41c7d2a0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

video_job_status = sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="videojobstatus")
video_type = sa.Enum("TEXT_TO_VIDEO", "IMAGE_TO_VIDEO", name="videotype")


def upgrade() -> None:
    """Create video_jobs table."""
    op.create_table(
        "video_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("video_type", video_type, nullable=False),
        sa.Column("prompt", sa.String(length=1000), nullable=False),
        sa.Column("input_image", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("status", video_job_status, nullable=False),
        # Provider operation handle and last observed payload
        sa.Column("operation", sa.JSON(none_as_null=True), nullable=True),
        # Resolved output object and signed URL (set on completion only)
        sa.Column("artifact", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_video_jobs_owner_id", "video_jobs", ["owner_id"])
    op.create_index("ix_video_jobs_status", "video_jobs", ["status"])
    # Listing is always per owner, newest first
    op.create_index("ix_video_jobs_owner_created", "video_jobs", ["owner_id", "created_at"])


def downgrade() -> None:
    """Drop video_jobs table."""
    op.drop_index("ix_video_jobs_owner_created", table_name="video_jobs")
    op.drop_index("ix_video_jobs_status", table_name="video_jobs")
    op.drop_index("ix_video_jobs_owner_id", table_name="video_jobs")
    op.drop_table("video_jobs")
    video_job_status.drop(op.get_bind(), checkfirst=True)
    video_type.drop(op.get_bind(), checkfirst=True)
