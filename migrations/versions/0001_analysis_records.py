"""analysis records

users, analysis_records (with the (status, submitted_at) claim index)
and the analysis_events audit trail.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "0001_analysis_records"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

IdType = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
JsonType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", IdType, sa.Identity(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name=op.f("uq_users_email")),
    )
    op.create_table(
        "analysis_records",
        sa.Column("id", IdType, sa.Identity(), nullable=False),
        sa.Column("owner_id", IdType, nullable=False),
        sa.Column("artifact_location", sa.Text(), nullable=False),
        sa.Column("original_filename", sa.String(), nullable=True),
        sa.Column("status", sa.String(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("result", JsonType, nullable=True),
        sa.Column("risk_level", sa.String(), nullable=True),
        sa.Column("error_info", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["owner_id"], ["users.id"],
            name=op.f("fk_analysis_records_owner_id_users"), ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_analysis_records")),
    )
    op.create_index("idx_analysis_records_status_submitted", "analysis_records", ["status", "submitted_at"])
    op.create_index("idx_analysis_records_owner_submitted", "analysis_records", ["owner_id", "submitted_at"])
    op.create_index("idx_analysis_records_owner_status", "analysis_records", ["owner_id", "status"])

    op.create_table(
        "analysis_events",
        sa.Column("id", IdType, sa.Identity(), nullable=False),
        sa.Column("record_id", IdType, nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["record_id"], ["analysis_records.id"],
            name=op.f("fk_analysis_events_record_id_analysis_records"), ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_analysis_events")),
    )
    op.create_index("idx_analysis_events_record_created", "analysis_events", ["record_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_analysis_events_record_created", table_name="analysis_events")
    op.drop_table("analysis_events")
    op.drop_index("idx_analysis_records_owner_status", table_name="analysis_records")
    op.drop_index("idx_analysis_records_owner_submitted", table_name="analysis_records")
    op.drop_index("idx_analysis_records_status_submitted", table_name="analysis_records")
    op.drop_table("analysis_records")
    op.drop_table("users")
