from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from src.alwayscare.domain.enums import AnalysisStatus
from src.alwayscare.domain.value_objects import AnalysisResult


@dataclass
class AnalysisRecord:
    id: int
    owner_id: int
    artifact_location: str
    status: AnalysisStatus
    submitted_at: datetime
    updated_at: datetime
    original_filename: Optional[str] = None
    result: Optional[AnalysisResult] = None
    error_info: Optional[str] = None
    attempts: int = 0
    finished_at: Optional[datetime] = None
