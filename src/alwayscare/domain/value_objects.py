from dataclasses import dataclass, field, asdict
from typing import Any, Optional

from src.alwayscare.domain.enums import AnalysisStatus, RiskLevel


@dataclass(frozen=True)
class Detection:
    name: str
    confidence: float

    def __post_init__(self):
        if not self.name:
            raise ValueError("Detection name must not be empty")
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")


@dataclass(frozen=True)
class AssessedDetection:
    name: str
    confidence: float
    risk_level: RiskLevel
    description: str


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: Optional[str]


@dataclass(frozen=True)
class AnalysisResult:
    detections: list[AssessedDetection]
    risk_level: RiskLevel
    risk_description: str
    image_info: Optional[ImageInfo] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "detections": [
                {
                    "name": d.name,
                    "confidence": d.confidence,
                    "risk_level": d.risk_level.value,
                    "description": d.description,
                }
                for d in self.detections
            ],
            "risk_level": self.risk_level.value,
            "risk_description": self.risk_description,
            "image_info": asdict(self.image_info) if self.image_info else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisResult":
        info = data.get("image_info")
        return cls(
            detections=[
                AssessedDetection(
                    name=str(d["name"]),
                    confidence=float(d["confidence"]),
                    risk_level=RiskLevel(d.get("risk_level", "none")),
                    description=str(d.get("description", "")),
                )
                for d in data.get("detections", [])
            ],
            risk_level=RiskLevel(data["risk_level"]),
            risk_description=str(data.get("risk_description", "")),
            image_info=ImageInfo(**info) if info else None,
        )


@dataclass(frozen=True)
class BatchReport:
    """Outcome of one dispatcher pass. Used for observability only."""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    reclaimed: int = 0
    abandoned: int = 0

    def merge(self, other: "BatchReport") -> "BatchReport":
        return BatchReport(
            attempted=self.attempted + other.attempted,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            timed_out=self.timed_out + other.timed_out,
            reclaimed=self.reclaimed + other.reclaimed,
            abandoned=self.abandoned + other.abandoned,
        )


@dataclass(frozen=True)
class ReclaimOutcome:
    requeued: list[int] = field(default_factory=list)
    abandoned: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    page_size: int = 10

    MAX_PAGE_SIZE = 100

    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if not (1 <= self.page_size <= self.MAX_PAGE_SIZE):
            raise ValueError(f"page_size must be between 1 and {self.MAX_PAGE_SIZE}")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class RecordStats:
    total: int
    by_status: dict[AnalysisStatus, int]
    by_risk_level: dict[RiskLevel, int]


@dataclass(frozen=True)
class AuthCredentials:
    user_id: int
    password_hash: str


@dataclass(frozen=True)
class Page:
    items: list[Any]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size
