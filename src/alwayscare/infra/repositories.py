from __future__ import annotations

from typing import Any, Optional
from datetime import datetime, timezone

from sqlalchemy.orm import Session
from sqlalchemy import func, update

from src.alwayscare.infra.models import UserORM, AnalysisRecordORM, AnalysisEventORM

from src.alwayscare.domain.enums import AnalysisEvent, AnalysisStatus, RiskLevel
from src.alwayscare.domain.value_objects import (
    AnalysisResult, AuthCredentials, PageRequest, ReclaimOutcome, RecordStats,
)
from src.alwayscare.domain.entities.user import User
from src.alwayscare.domain.entities.analysis_record import AnalysisRecord
from src.alwayscare.domain.services.state_machine import ensure_transition


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands datetimes back naive; everything is stored in UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# mappers ORM -> Domain
def _user_dom(u: UserORM) -> User:
    return User(
        id=int(u.id),
        email=str(u.email),
        is_active=bool(u.is_active),
        created_at=_as_utc(u.created_at),
    )


def _auth_creds_dom(u: UserORM) -> AuthCredentials:
    return AuthCredentials(
        user_id=int(u.id),
        password_hash=str(u.password_hash),
    )


def _record_dom(r: AnalysisRecordORM) -> AnalysisRecord:
    return AnalysisRecord(
        id=int(r.id),
        owner_id=int(r.owner_id),
        artifact_location=str(r.artifact_location),
        original_filename=r.original_filename,
        status=AnalysisStatus(str(r.status)),
        result=AnalysisResult.from_dict(r.result) if r.result else None,
        error_info=r.error_info,
        attempts=int(r.attempts or 0),
        submitted_at=_as_utc(r.submitted_at),
        updated_at=_as_utc(r.updated_at),
        finished_at=_as_utc(r.finished_at),
    )


# repos
class SqlUserRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, email: str) -> Optional[User]:
        u = self.db.query(UserORM).filter(UserORM.email == email).first()
        return _user_dom(u) if u else None

    def get_by_id(self, user_id: int) -> Optional[User]:
        u = self.db.query(UserORM).filter(UserORM.id == user_id).first()
        return _user_dom(u) if u else None

    def get_auth_credentials(self, email: str) -> Optional[AuthCredentials]:
        u = (
            self.db.query(UserORM)
            .filter(UserORM.email == email, UserORM.is_active.is_(True))
            .first()
        )
        return _auth_creds_dom(u) if u else None

    def create(self, email: str, password_hash: str) -> User:
        u = UserORM(email=email, password_hash=password_hash, is_active=True, created_at=_utc_now())
        self.db.add(u)
        self.db.flush()
        return _user_dom(u)


class SqlAnalysisRecordRepo:
    """
    Record store. Every status change is a conditional UPDATE on the current
    status, so of two concurrent writers only one can move a given row.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: int,
        artifact_location: str,
        original_filename: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
    ) -> AnalysisRecord:
        now = _utc_now()
        r = AnalysisRecordORM(
            owner_id=owner_id,
            artifact_location=artifact_location,
            original_filename=original_filename,
            status=AnalysisStatus.PENDING.value,
            attempts=0,
            submitted_at=submitted_at or now,
            updated_at=now,
        )
        self.db.add(r)
        self.db.flush()
        self._log(int(r.id), AnalysisEvent.SUBMITTED, None, AnalysisStatus.PENDING)
        return _record_dom(r)

    def get_by_id(self, record_id: int) -> Optional[AnalysisRecord]:
        r = (
            self.db.query(AnalysisRecordORM)
            .populate_existing()
            .filter(AnalysisRecordORM.id == record_id)
            .first()
        )
        return _record_dom(r) if r else None

    def list_by_status(
        self,
        status: AnalysisStatus,
        limit: int,
        owner_id: Optional[int] = None,
    ) -> list[AnalysisRecord]:
        q = (
            self.db.query(AnalysisRecordORM)
            .populate_existing()
            .filter(AnalysisRecordORM.status == status.value)
        )
        if owner_id is not None:
            q = q.filter(AnalysisRecordORM.owner_id == owner_id)
        rows = (
            q.order_by(AnalysisRecordORM.submitted_at.asc(), AnalysisRecordORM.id.asc())
            .limit(limit)
            .all()
        )
        return [_record_dom(r) for r in rows]

    # transitions
    def _transition(
        self,
        record_id: int,
        from_status: AnalysisStatus,
        to_status: AnalysisStatus,
        event: AnalysisEvent,
        message: Optional[str] = None,
        **values: Any,
    ) -> bool:
        ensure_transition(from_status, to_status)

        stmt = (
            update(AnalysisRecordORM)
            .where(
                AnalysisRecordORM.id == record_id,
                AnalysisRecordORM.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=_utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        res = self.db.execute(stmt)
        if res.rowcount != 1:
            return False

        self._log(record_id, event, from_status, to_status, message)
        return True

    def claim(
        self,
        record_id: int,
        from_status: AnalysisStatus = AnalysisStatus.PENDING,
        event: AnalysisEvent = AnalysisEvent.CLAIMED,
    ) -> Optional[AnalysisRecord]:
        ok = self._transition(
            record_id,
            from_status,
            AnalysisStatus.PROCESSING,
            event,
            attempts=AnalysisRecordORM.attempts + 1,
            result=None,
            risk_level=None,
            error_info=None,
            finished_at=None,
        )
        return self.get_by_id(record_id) if ok else None

    def complete(self, record_id: int, result: AnalysisResult) -> bool:
        return self._transition(
            record_id,
            AnalysisStatus.PROCESSING,
            AnalysisStatus.COMPLETED,
            AnalysisEvent.COMPLETED,
            message=f"risk_level={result.risk_level.value}",
            result=result.to_dict(),
            risk_level=result.risk_level.value,
            error_info=None,
            finished_at=_utc_now(),
        )

    def fail(self, record_id: int, error_info: str) -> bool:
        error_info = (error_info or "").strip() or "unknown error"
        return self._transition(
            record_id,
            AnalysisStatus.PROCESSING,
            AnalysisStatus.FAILED,
            AnalysisEvent.FAILED,
            message=error_info,
            result=None,
            risk_level=None,
            error_info=error_info,
            finished_at=_utc_now(),
        )

    def reclaim_stale(self, older_than: datetime, max_attempts: int) -> ReclaimOutcome:
        """
        Records stuck in processing since before `older_than` go back to
        pending, or to failed once they have used up `max_attempts`.
        """
        stale = (
            self.db.query(AnalysisRecordORM.id, AnalysisRecordORM.attempts)
            .filter(
                AnalysisRecordORM.status == AnalysisStatus.PROCESSING.value,
                AnalysisRecordORM.updated_at < older_than,
            )
            .order_by(AnalysisRecordORM.submitted_at.asc())
            .all()
        )

        requeued: list[int] = []
        abandoned: list[int] = []
        for record_id, attempts in stale:
            record_id = int(record_id)
            if int(attempts or 0) >= max_attempts:
                error_info = f"analysis abandoned: no progress after {attempts} attempt(s)"
                ok = self._transition(
                    record_id,
                    AnalysisStatus.PROCESSING,
                    AnalysisStatus.FAILED,
                    AnalysisEvent.ABANDONED,
                    message=error_info,
                    result=None,
                    risk_level=None,
                    error_info=error_info,
                    finished_at=_utc_now(),
                )
                if ok:
                    abandoned.append(record_id)
            else:
                ok = self._transition(
                    record_id,
                    AnalysisStatus.PROCESSING,
                    AnalysisStatus.PENDING,
                    AnalysisEvent.RECLAIMED,
                    message=f"stale since before {older_than.isoformat()}",
                )
                if ok:
                    requeued.append(record_id)

        return ReclaimOutcome(requeued=requeued, abandoned=abandoned)

    # read side
    def stats(self, owner_id: int) -> RecordStats:
        by_status = {s: 0 for s in AnalysisStatus}
        rows = (
            self.db.query(AnalysisRecordORM.status, func.count(AnalysisRecordORM.id))
            .filter(AnalysisRecordORM.owner_id == owner_id)
            .group_by(AnalysisRecordORM.status)
            .all()
        )
        for status, cnt in rows:
            by_status[AnalysisStatus(str(status))] = int(cnt)

        by_risk = {lvl: 0 for lvl in RiskLevel}
        rows = (
            self.db.query(AnalysisRecordORM.risk_level, func.count(AnalysisRecordORM.id))
            .filter(
                AnalysisRecordORM.owner_id == owner_id,
                AnalysisRecordORM.status == AnalysisStatus.COMPLETED.value,
            )
            .group_by(AnalysisRecordORM.risk_level)
            .all()
        )
        for lvl, cnt in rows:
            if lvl:
                by_risk[RiskLevel(str(lvl))] = int(cnt)

        return RecordStats(total=sum(by_status.values()), by_status=by_status, by_risk_level=by_risk)

    def _owned(self, owner_id: int, status: Optional[AnalysisStatus]):
        q = self.db.query(AnalysisRecordORM).filter(AnalysisRecordORM.owner_id == owner_id)
        if status is not None:
            q = q.filter(AnalysisRecordORM.status == status.value)
        return q

    def count_by_owner(self, owner_id: int, status: Optional[AnalysisStatus] = None) -> int:
        return self._owned(owner_id, status).count()

    def list_by_owner(
        self,
        owner_id: int,
        page: PageRequest,
        status: Optional[AnalysisStatus] = None,
    ) -> list[AnalysisRecord]:
        rows = (
            self._owned(owner_id, status)
            .populate_existing()
            .order_by(AnalysisRecordORM.submitted_at.desc(), AnalysisRecordORM.id.desc())
            .offset(page.offset)
            .limit(page.page_size)
            .all()
        )
        return [_record_dom(r) for r in rows]

    def list_recent(self, owner_id: int, limit: int) -> list[AnalysisRecord]:
        rows = (
            self.db.query(AnalysisRecordORM)
            .populate_existing()
            .filter(AnalysisRecordORM.owner_id == owner_id)
            .order_by(AnalysisRecordORM.submitted_at.desc(), AnalysisRecordORM.id.desc())
            .limit(limit)
            .all()
        )
        return [_record_dom(r) for r in rows]

    def list_events(self, record_id: int) -> list[dict[str, Any]]:
        rows = (
            self.db.query(AnalysisEventORM)
            .filter(AnalysisEventORM.record_id == record_id)
            .order_by(AnalysisEventORM.id.asc())
            .all()
        )
        return [
            {
                "event": e.event,
                "from_status": e.from_status,
                "to_status": e.to_status,
                "message": e.message,
                "created_at": _as_utc(e.created_at),
            }
            for e in rows
        ]

    def _log(
        self,
        record_id: int,
        event: AnalysisEvent,
        from_status: Optional[AnalysisStatus],
        to_status: AnalysisStatus,
        message: Optional[str] = None,
    ) -> None:
        self.db.add(
            AnalysisEventORM(
                record_id=record_id,
                event=event.value,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                message=message,
                created_at=_utc_now(),
            )
        )
        self.db.flush()
