from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.alwayscare.domain.entities.analysis_record import AnalysisRecord


# Auth
class AuthRegisterRequest(BaseModel):
    email: str
    password: str


class AuthLoginRequest(BaseModel):
    email: str
    password: str


class AuthTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


# Analysis
class DetectionResponse(BaseModel):
    name: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    risk_level: str
    description: str


class AnalysisResultResponse(BaseModel):
    detections: list[DetectionResponse]
    risk_level: str
    risk_description: str
    image_info: Optional[dict[str, Any]] = None


class RecordStatusResponse(BaseModel):
    """
    Current state of one record. `result` is set only when completed,
    `error_info` only when failed.
    """
    id: int
    status: str
    original_filename: Optional[str] = None
    submitted_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None
    attempts: int = 0
    result: Optional[AnalysisResultResponse] = None
    error_info: Optional[str] = None


class RecordSummaryResponse(BaseModel):
    id: int
    original_filename: Optional[str] = None
    status: str
    risk_level: Optional[str] = None
    submitted_at: datetime


class TriggerResponse(BaseModel):
    id: int
    status: str


class RetryFailedResponse(BaseModel):
    record_ids: list[int]
    count: int


class StatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_risk_level: dict[str, int]
    recent: list[RecordSummaryResponse]


class RecordPageResponse(BaseModel):
    items: list[RecordStatusResponse]
    page: int
    page_size: int
    total: int
    total_pages: int


class RecordEventResponse(BaseModel):
    event: str
    from_status: Optional[str] = None
    to_status: str
    message: Optional[str] = None
    created_at: datetime


# domain -> API DTO
def record_to_response(rec: AnalysisRecord) -> RecordStatusResponse:
    return RecordStatusResponse(
        id=rec.id,
        status=rec.status.value,
        original_filename=rec.original_filename,
        submitted_at=rec.submitted_at,
        updated_at=rec.updated_at,
        finished_at=rec.finished_at,
        attempts=rec.attempts,
        result=AnalysisResultResponse(**rec.result.to_dict()) if rec.result else None,
        error_info=rec.error_info,
    )


def record_to_summary(rec: AnalysisRecord) -> RecordSummaryResponse:
    return RecordSummaryResponse(
        id=rec.id,
        original_filename=rec.original_filename,
        status=rec.status.value,
        risk_level=rec.result.risk_level.value if rec.result else None,
        submitted_at=rec.submitted_at,
    )
