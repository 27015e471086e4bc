"""Shared fixtures: a fake clock, a scripted backend and a controller factory."""

import copy
import json
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest

from api_client import ApiClient
from session import SessionController
from timer import Timer

BASE_URL = "http://assess.test/api"

SAMPLE_TEST: Dict[str, Any] = {
    "id": "t1",
    "title": "Python Basics",
    "durationInMinutes": 2,
    "maxMarks": 5,
    "passingMarks": 3,
    "questions": [
        {
            "id": "q1",
            "type": "MCQ",
            "questionText": "2 + 2 = ?",
            "marks": 1,
            "order": 1,
            "options": [{"id": "a", "optionText": "3"}, {"id": "b", "optionText": "4"}],
        },
        {
            "id": "q2",
            "type": "MCQ",
            "questionText": "Which literal is a list?",
            "marks": 1,
            "order": 2,
            "options": [{"id": "a", "optionText": "()"}, {"id": "b", "optionText": "[]"}],
        },
        {
            "id": "q3",
            "type": "CODE",
            "questionText": "Print the sum of two integers.",
            "marks": 3,
            "order": 3,
            "codeLanguage": "python",
            "visible_testcases": [
                {"input": "1 2", "expected_output": "3"},
                {"input": "5 7", "expected_output": "12"},
            ],
        },
    ],
}

MIXED_TEST: Dict[str, Any] = {
    "id": "t2",
    "title": "Mixed",
    "duration": 30,
    "questions": [
        {
            "id": "m1",
            "type": "MCQ",
            "multiSelect": True,
            "text": "Pick the even numbers",
            "marks": 2,
            "options": [
                {"id": "o1", "text": "1"},
                {"id": "o2", "text": "2"},
                {"id": "o3", "text": "4"},
            ],
        },
        {
            "id": "d1",
            "type": "DESCRIPTIVE",
            "text": "Explain recursion.",
            "marks": 4,
            "expectedWordCount": 5,
        },
        {"id": "c1", "type": "CODE", "text": "Reverse a string.", "marks": 4},
    ],
}


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Scripted replies for ``httpx.MockTransport``.

    Each route holds a queue of replies; the last one repeats. A reply is a
    ``(status, body)`` tuple or a callable taking the request.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, *replies: Any) -> None:
        self.routes[(method, "/api" + path)] = list(replies)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == "/api" + path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={"message": "Not found"})
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if callable(reply):
            return reply(request)
        status, body = reply
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    fake = FakeBackend()
    fake.on("GET", "/student/tests/t1", (200, {"success": True, "data": copy.deepcopy(SAMPLE_TEST)}))
    fake.on("GET", "/student/tests/t2", (200, {"data": {"test": copy.deepcopy(MIXED_TEST)}}))
    fake.on("POST", "/student/tests/t1/submit", (201, {"data": {"submissionId": "sub-1"}}))
    fake.on("POST", "/student/tests/t2/submit", (201, {"submissionId": "sub-2"}))
    fake.on("PUT", "/student/tests/t1/draft", (204, None))
    return fake


@pytest.fixture
def api(backend: FakeBackend):
    client = ApiClient(
        base_url=BASE_URL,
        token_provider=lambda: "token-123",
        transport=httpx.MockTransport(backend),
    )
    yield client
    client.close()


@pytest.fixture
def timers(clock: FakeClock) -> Callable[..., Timer]:
    """Timer factory on the fake clock; created timers are kept on ``.created``."""
    created: List[Timer] = []

    def factory(total_seconds, on_expire, on_warning):
        timer = Timer(total_seconds, on_expire=on_expire, on_warning=on_warning, clock=clock, threaded=False)
        created.append(timer)
        return timer

    factory.created = created
    return factory


@pytest.fixture
def make_controller(api: ApiClient, timers) -> Callable[..., SessionController]:
    controllers: List[SessionController] = []

    def make(**kwargs) -> SessionController:
        kwargs.setdefault("timer_factory", timers)
        kwargs.setdefault("sleep", lambda seconds: None)
        kwargs.setdefault("autosave_interval", 0)
        controller = SessionController(api, **kwargs)
        controllers.append(controller)
        return controller

    yield make
    for controller in controllers:
        controller.close()


def submitted_body(backend: FakeBackend, test_id: str = "t1", index: int = -1) -> Dict[str, Any]:
    requests = backend.calls("POST", f"/student/tests/{test_id}/submit")
    return json.loads(requests[index].content)
