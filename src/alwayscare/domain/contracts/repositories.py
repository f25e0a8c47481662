from datetime import datetime
from typing import Any, Optional, Protocol

from src.alwayscare.domain.entities.analysis_record import AnalysisRecord
from src.alwayscare.domain.entities.user import User
from src.alwayscare.domain.enums import AnalysisEvent, AnalysisStatus
from src.alwayscare.domain.value_objects import (
    AnalysisResult, AuthCredentials, PageRequest, ReclaimOutcome, RecordStats,
)


class UserRepo(Protocol):
    def get_by_email(self, email: str) -> Optional[User]: ...
    def get_by_id(self, user_id: int) -> Optional[User]: ...
    def get_auth_credentials(self, email: str) -> Optional[AuthCredentials]: ...
    def create(self, email: str, password_hash: str) -> User: ...


class AnalysisRecordRepo(Protocol):
    def create(
        self,
        owner_id: int,
        artifact_location: str,
        original_filename: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
    ) -> AnalysisRecord: ...

    def get_by_id(self, record_id: int) -> Optional[AnalysisRecord]: ...

    def list_by_status(
        self,
        status: AnalysisStatus,
        limit: int,
        owner_id: Optional[int] = None,
    ) -> list[AnalysisRecord]: ...

    def claim(
        self,
        record_id: int,
        from_status: AnalysisStatus = AnalysisStatus.PENDING,
        event: AnalysisEvent = AnalysisEvent.CLAIMED,
    ) -> Optional[AnalysisRecord]: ...

    def complete(self, record_id: int, result: AnalysisResult) -> bool: ...
    def fail(self, record_id: int, error_info: str) -> bool: ...
    def reclaim_stale(self, older_than: datetime, max_attempts: int) -> ReclaimOutcome: ...

    def stats(self, owner_id: int) -> RecordStats: ...
    def count_by_owner(self, owner_id: int, status: Optional[AnalysisStatus] = None) -> int: ...
    def list_by_owner(
        self, owner_id: int, page: PageRequest, status: Optional[AnalysisStatus] = None
    ) -> list[AnalysisRecord]: ...
    def list_recent(self, owner_id: int, limit: int) -> list[AnalysisRecord]: ...
    def list_events(self, record_id: int) -> list[dict[str, Any]]: ...
