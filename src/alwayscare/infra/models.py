from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Boolean,
    DateTime, BigInteger, ForeignKey,
    Text, Integer, JSON,
    Index, Identity, text as sa_text,
)
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB

from src.alwayscare.infra.db import Base


# JSONB on postgres, plain JSON (text) on sqlite
JsonType = JSON().with_variant(JSONB(), "postgresql")

# sqlite only autoincrements plain INTEGER primary keys
IdType = BigInteger().with_variant(Integer(), "sqlite")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserORM(Base):
    __tablename__ = "users"

    id = Column(IdType, Identity(), primary_key=True)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, server_default=sa_text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AnalysisRecordORM(Base):
    """
    One submitted image and the state of its analysis.
    status: pending -> processing -> completed | failed
    """
    __tablename__ = "analysis_records"

    id = Column(IdType, Identity(), primary_key=True)
    owner_id = Column(
        IdType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    artifact_location = Column(Text, nullable=False)
    original_filename = Column(String, nullable=True)

    status = Column(String, nullable=False, server_default=sa_text("'pending'"))
    result = Column(JsonType, nullable=True)
    risk_level = Column(String, nullable=True)
    error_info = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, server_default=sa_text("0"))

    submitted_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # dispatcher claim query: oldest pending first
        Index("idx_analysis_records_status_submitted", "status", "submitted_at"),
        # completed listing / recent activity
        Index("idx_analysis_records_owner_submitted", "owner_id", "submitted_at"),
        Index("idx_analysis_records_owner_status", "owner_id", "status"),
    )


class AnalysisEventORM(Base):
    """Audit trail of status transitions."""
    __tablename__ = "analysis_events"

    id = Column(IdType, Identity(), primary_key=True)
    record_id = Column(
        IdType,
        ForeignKey("analysis_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    event = Column(String, nullable=False)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    __table_args__ = (
        Index("idx_analysis_events_record_created", "record_id", "created_at"),
    )
