from typing import Protocol
from src.alwayscare.domain.contracts.repositories import UserRepo, AnalysisRecordRepo

class UoW(Protocol):
    users: UserRepo
    records: AnalysisRecordRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...
