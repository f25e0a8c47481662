from src.alwayscare.domain.enums import AnalysisStatus
from src.alwayscare.domain.errors import InvalidTransition

S = AnalysisStatus

# processing -> pending is the audited stuck-job reclaim;
# failed/completed -> processing are the explicit retry and manual trigger paths.
ALLOWED_TRANSITIONS: dict[AnalysisStatus, frozenset[AnalysisStatus]] = {
    S.PENDING: frozenset({S.PROCESSING}),
    S.PROCESSING: frozenset({S.COMPLETED, S.FAILED, S.PENDING}),
    S.FAILED: frozenset({S.PROCESSING}),
    S.COMPLETED: frozenset({S.PROCESSING}),
}

# statuses a manual trigger may start from
TRIGGERABLE = frozenset({S.PENDING, S.FAILED, S.COMPLETED})


def can_transition(src: AnalysisStatus, dst: AnalysisStatus) -> bool:
    return dst in ALLOWED_TRANSITIONS.get(src, frozenset())


def ensure_transition(src: AnalysisStatus, dst: AnalysisStatus) -> None:
    if not can_transition(src, dst):
        raise InvalidTransition(f"{src.value} -> {dst.value} is not a valid status transition")
