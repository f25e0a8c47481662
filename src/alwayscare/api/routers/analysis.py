import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.alwayscare.api.deps import (
    Enqueuer, OwnerContext, get_current_owner, get_analysis_service, get_enqueuer,
)
from src.alwayscare.api.schemas import (
    RecordEventResponse,
    RecordPageResponse,
    RecordStatusResponse,
    RetryFailedResponse,
    StatsResponse,
    TriggerResponse,
    record_to_response,
    record_to_summary,
)
from src.alwayscare.core.settings import settings
from src.alwayscare.domain.enums import AnalysisStatus
from src.alwayscare.domain.errors import Conflict, Forbidden, NotFound
from src.alwayscare.domain.value_objects import Page
from src.alwayscare.services.analysis_service import AnalysisService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")
    if isinstance(e, Forbidden):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if isinstance(e, Conflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/records/{record_id}", response_model=RecordStatusResponse)
def get_status(
    record_id: int,
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
):
    try:
        return record_to_response(svc.get_record(ctx.user_id, record_id))
    except (NotFound, Forbidden) as e:
        raise _http_error(e)


@router.get("/records/{record_id}/events", response_model=list[RecordEventResponse])
def get_events(
    record_id: int,
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
):
    try:
        return svc.events(ctx.user_id, record_id)
    except (NotFound, Forbidden) as e:
        raise _http_error(e)


@router.post("/records/{record_id}/trigger", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_analysis(
    record_id: int,
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
    enqueue: Enqueuer = Depends(get_enqueuer),
):
    try:
        record = svc.trigger(ctx.user_id, record_id)
    except (NotFound, Forbidden, Conflict) as e:
        raise _http_error(e)

    # The record is already processing; if the worker never hears about it, fail it.
    try:
        await enqueue(record.id)
    except Exception as e:
        logger.exception("failed to enqueue record %s", record.id)
        svc.mark_enqueue_failed(record.id, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analysis could not be queued. Please retry.",
        )

    return TriggerResponse(id=record.id, status=record.status.value)


@router.post("/retry-failed", response_model=RetryFailedResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_failed(
    limit: int = Query(settings.RETRY_BATCH_SIZE, ge=1, le=100),
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
    enqueue: Enqueuer = Depends(get_enqueuer),
):
    claimed = svc.claim_failed_for_retry(ctx.user_id, limit)

    queued: list[int] = []
    for record in claimed:
        try:
            await enqueue(record.id)
            queued.append(record.id)
        except Exception as e:
            logger.exception("failed to enqueue record %s for retry", record.id)
            svc.mark_enqueue_failed(record.id, e)

    return RetryFailedResponse(record_ids=queued, count=len(queued))


@router.get("/stats", response_model=StatsResponse)
def get_stats(
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
):
    st = svc.stats(ctx.user_id)
    return StatsResponse(
        total=st["total"],
        by_status=st["by_status"],
        by_risk_level=st["by_risk_level"],
        recent=[record_to_summary(r) for r in st["recent"]],
    )


def _page_response(p: Page) -> RecordPageResponse:
    return RecordPageResponse(
        items=[record_to_response(r) for r in p.items],
        page=p.page,
        page_size=p.page_size,
        total=p.total,
        total_pages=p.total_pages,
    )


@router.get("/records", response_model=RecordPageResponse)
def list_records(
    status_filter: Optional[AnalysisStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
):
    return _page_response(svc.list_records(ctx.user_id, page=page, page_size=page_size, status=status_filter))


@router.get("/completed", response_model=RecordPageResponse)
def list_completed(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
):
    return _page_response(svc.list_completed(ctx.user_id, page=page, page_size=page_size))
