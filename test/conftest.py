"""공통 fixture: 이벤트 수집 sink, 가짜 시계, 주입된 구성 요소로 만든 앱"""

import threading
from typing import List

import pytest
from fastapi.testclient import TestClient

from main import create_app
from recipes.repository import RecipeRepository
from security.event_log import EventSink, SecurityEvent, SecurityEventLog
from security.rate_limiter import DEFAULT_POLICIES, RateLimiter


class RecordingSink(EventSink):
    def __init__(self):
        self.events: List[SecurityEvent] = []
        self._lock = threading.Lock()

    def write(self, event: SecurityEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> List[SecurityEvent]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def event_log(sink):
    log = SecurityEventLog([sink])
    yield log
    log.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(policies=dict(DEFAULT_POLICIES), clock=clock)


@pytest.fixture
def repository():
    return RecipeRepository()


@pytest.fixture
def client(limiter, event_log, repository):
    app = create_app(rate_limiter=limiter, event_log=event_log, repository=repository)
    with TestClient(app) as test_client:
        yield test_client
