import logging
from typing import Any, Optional

from src.alwayscare.domain.contracts.uow import UoW
from src.alwayscare.domain.entities.analysis_record import AnalysisRecord
from src.alwayscare.domain.enums import AnalysisEvent, AnalysisStatus
from src.alwayscare.domain.errors import Conflict, Forbidden, NotFound
from src.alwayscare.domain.services.state_machine import TRIGGERABLE
from src.alwayscare.domain.value_objects import Page, PageRequest

logger = logging.getLogger(__name__)


class AnalysisService:
    """Upload entry point, read side of the record store and the manual trigger claim."""

    RECENT_ACTIVITY_LIMIT = 5

    def __init__(self, uow: UoW):
        self.uow = uow

    # upload collaborator
    def submit(self, owner_id: int, artifact_location: str, original_filename: Optional[str] = None) -> AnalysisRecord:
        if not artifact_location:
            raise ValueError("artifact_location must not be empty")
        try:
            record = self.uow.records.create(
                owner_id=owner_id,
                artifact_location=artifact_location,
                original_filename=original_filename,
            )
            self.uow.commit()
        except Exception:
            self.uow.rollback()
            raise
        logger.info("record %s submitted by owner %s", record.id, owner_id)
        return record

    # status api
    def get_record(self, owner_id: int, record_id: int) -> AnalysisRecord:
        record = self.uow.records.get_by_id(record_id)
        if record is None:
            raise NotFound(f"Record {record_id} not found")
        if record.owner_id != owner_id:
            raise Forbidden("Access denied")
        return record

    def stats(self, owner_id: int) -> dict[str, Any]:
        st = self.uow.records.stats(owner_id)
        return {
            "total": st.total,
            "by_status": {k.value: v for k, v in st.by_status.items()},
            "by_risk_level": {k.value: v for k, v in st.by_risk_level.items()},
            "recent": self.uow.records.list_recent(owner_id, self.RECENT_ACTIVITY_LIMIT),
        }

    def list_records(
        self,
        owner_id: int,
        page: int = 1,
        page_size: int = 10,
        status: Optional[AnalysisStatus] = None,
    ) -> Page:
        """Owner's records, most recently submitted first, optionally of one status."""
        req = PageRequest(page=page, page_size=page_size)
        total = self.uow.records.count_by_owner(owner_id, status)
        items = self.uow.records.list_by_owner(owner_id, req, status)
        return Page(items=items, page=req.page, page_size=req.page_size, total=total)

    def list_completed(self, owner_id: int, page: int = 1, page_size: int = 10) -> Page:
        return self.list_records(owner_id, page, page_size, AnalysisStatus.COMPLETED)

    def events(self, owner_id: int, record_id: int) -> list[dict[str, Any]]:
        self.get_record(owner_id, record_id)
        return self.uow.records.list_events(record_id)

    # manual trigger
    def trigger(self, owner_id: int, record_id: int) -> AnalysisRecord:
        """
        Claims one record for re-analysis. The caller hands the claimed record
        to the worker; the analysis itself happens asynchronously.
        """
        record = self.get_record(owner_id, record_id)
        if record.status not in TRIGGERABLE:
            raise Conflict("Image is already being processed")

        claimed = self.uow.records.claim(record.id, from_status=record.status, event=AnalysisEvent.TRIGGERED)
        if claimed is None:
            # lost the race against a dispatcher pass
            self.uow.rollback()
            raise Conflict("Image is already being processed")

        self.uow.commit()
        logger.info("record %s triggered manually (was %s)", record.id, record.status.value)
        return claimed

    def claim_failed_for_retry(self, owner_id: int, limit: int) -> list[AnalysisRecord]:
        failed = self.uow.records.list_by_status(AnalysisStatus.FAILED, limit, owner_id=owner_id)
        claimed: list[AnalysisRecord] = []
        for rec in failed:
            got = self.uow.records.claim(rec.id, from_status=AnalysisStatus.FAILED, event=AnalysisEvent.RETRIED)
            if got is not None:
                claimed.append(got)
        self.uow.commit()
        return claimed

    def mark_enqueue_failed(self, record_id: int, error: Exception) -> None:
        try:
            self.uow.records.fail(record_id, f"mq_publish_error: {error}")
            self.uow.commit()
        except Exception:
            logger.exception("could not mark record %s failed after publish error", record_id)
            self.uow.rollback()
