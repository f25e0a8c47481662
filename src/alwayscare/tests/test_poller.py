import threading

import httpx
import pytest

from src.alwayscare.client.poller import (
    PollCancelled,
    PollPolicy,
    PollTimeout,
    StatusClient,
    StatusPoller,
)


class ScriptedStatus:
    """Returns the given statuses in order, repeating the last one."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.calls = 0

    def __call__(self, record_id: int) -> dict:
        self.calls += 1
        item = self.statuses[min(self.calls, len(self.statuses)) - 1]
        if isinstance(item, Exception):
            raise item
        return {"id": record_id, "status": item}


class RecordingWait:
    def __init__(self, cancel_after=None):
        self.delays = []
        self.cancel_after = cancel_after

    def __call__(self, seconds: float) -> bool:
        self.delays.append(seconds)
        return self.cancel_after is not None and len(self.delays) >= self.cancel_after


def test_poll_returns_once_terminal():
    fetch = ScriptedStatus("pending", "processing", "completed")
    wait = RecordingWait()

    payload = StatusPoller(fetch, PollPolicy(interval=2.0), wait=wait).poll(42)

    assert payload == {"id": 42, "status": "completed"}
    assert fetch.calls == 3
    assert wait.delays == [2.0, 2.0]


def test_failed_is_terminal_too():
    assert StatusPoller(ScriptedStatus("failed"), wait=RecordingWait()).poll(1)["status"] == "failed"


def test_poll_gives_up_after_max_attempts():
    fetch = ScriptedStatus("processing")
    poller = StatusPoller(fetch, PollPolicy(interval=1.0, max_attempts=4), wait=RecordingWait())

    with pytest.raises(PollTimeout, match="not terminal after 4 attempt"):
        poller.poll(7)

    assert fetch.calls == 4
    assert poller.attempts == 4


def test_backoff_is_capped():
    policy = PollPolicy(interval=1.0, backoff=2.0, max_interval=5.0)

    assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_transport_errors_are_retried():
    request = httpx.Request("GET", "http://test/api/analysis/records/3")
    fetch = ScriptedStatus(httpx.ConnectError("refused", request=request), "completed")

    payload = StatusPoller(fetch, wait=RecordingWait()).poll(3)

    assert payload["status"] == "completed"


def test_http_errors_are_not_retried():
    request = httpx.Request("GET", "http://test/api/analysis/records/3")
    response = httpx.Response(404, request=request)
    fetch = ScriptedStatus(httpx.HTTPStatusError("not found", request=request, response=response))

    with pytest.raises(httpx.HTTPStatusError):
        StatusPoller(fetch, wait=RecordingWait()).poll(3)
    assert fetch.calls == 1


def test_cancel_through_wait():
    fetch = ScriptedStatus("pending")

    with pytest.raises(PollCancelled):
        StatusPoller(fetch, wait=RecordingWait(cancel_after=2)).poll(5)
    assert fetch.calls == 2


def test_cancel_from_another_thread_wakes_the_default_wait():
    poller = StatusPoller(ScriptedStatus("processing"), PollPolicy(interval=30.0, max_attempts=3))
    timer = threading.Timer(0.05, poller.cancel)
    timer.start()
    try:
        with pytest.raises(PollCancelled):
            poller.poll(9)
    finally:
        timer.cancel()

    assert poller.cancelled


def test_status_client_sends_bearer_token_and_parses_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"id": 11, "status": "completed"})

    with StatusClient("http://test", token="tok", transport=httpx.MockTransport(handler)) as client:
        payload = StatusPoller(client.fetch_status, wait=RecordingWait()).poll(11)

    assert payload["status"] == "completed"
    assert seen == {"path": "/api/analysis/records/11", "auth": "Bearer tok"}


def test_status_client_raises_on_forbidden():
    transport = httpx.MockTransport(lambda request: httpx.Response(403, json={"detail": "Access denied"}))

    with StatusClient("http://test", token="tok", transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            client.fetch_status(1)
