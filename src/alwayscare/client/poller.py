"""
Client-side status polling.

The poller asks for a record's status until it reaches a terminal state,
waiting between attempts with an optional backoff. It gives up after
`max_attempts` and can be cancelled from another thread (e.g. on shutdown).
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from src.alwayscare.domain.enums import AnalysisStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({AnalysisStatus.COMPLETED.value, AnalysisStatus.FAILED.value})


class PollTimeout(Exception):
    pass


class PollCancelled(Exception):
    pass


@dataclass(frozen=True)
class PollPolicy:
    interval: float = 5.0
    max_attempts: int = 60
    backoff: float = 1.0
    max_interval: float = 30.0

    def __post_init__(self):
        if self.interval < 0 or self.max_interval < 0:
            raise ValueError("intervals must be >= 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")

    def delay(self, attempt: int) -> float:
        """Wait before attempt number `attempt` (1-based)."""
        return min(self.max_interval, self.interval * (self.backoff ** max(0, attempt - 1)))


class StatusPoller:
    def __init__(
        self,
        fetch_status: Callable[[int], dict[str, Any]],
        policy: PollPolicy = PollPolicy(),
        wait: Optional[Callable[[float], bool]] = None,
    ):
        """
        `fetch_status` returns the status payload of a record.
        `wait(seconds)` sleeps and returns True if woken by cancellation;
        the default waits on the poller's own cancel event.
        """
        self.fetch_status = fetch_status
        self.policy = policy
        self._cancelled = threading.Event()
        self._wait = wait or self._cancelled.wait
        self.attempts = 0

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def poll(self, record_id: int) -> dict[str, Any]:
        self.attempts = 0
        last_error: Optional[Exception] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            if self.cancelled:
                raise PollCancelled(f"polling of record {record_id} cancelled")

            self.attempts = attempt
            try:
                payload = self.fetch_status(record_id)
            except httpx.HTTPStatusError:
                # 4xx/5xx answers (not found, forbidden, ...) will not change by waiting
                raise
            except httpx.TransportError as exc:
                last_error = exc
                logger.warning("status poll %d for record %s failed: %s", attempt, record_id, exc)
            else:
                if payload.get("status") in TERMINAL_STATUSES:
                    return payload

            if attempt < self.policy.max_attempts:
                if self._wait(self.policy.delay(attempt)) or self.cancelled:
                    raise PollCancelled(f"polling of record {record_id} cancelled")

        msg = f"record {record_id} not terminal after {self.policy.max_attempts} attempt(s)"
        if last_error is not None:
            msg += f" (last error: {last_error})"
        raise PollTimeout(msg)


class StatusClient:
    """Minimal HTTP client for the status endpoint."""

    def __init__(self, base_url: str, token: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def fetch_status(self, record_id: int) -> dict[str, Any]:
        r = self._client.get(f"/api/analysis/records/{record_id}")
        r.raise_for_status()
        return r.json()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "StatusClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
