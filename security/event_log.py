"""
보안 이벤트 로깅

검증 실패, rate limit 초과, 인증 실패 등 보안 관련 이벤트를 기록합니다.
record()는 요청 처리를 막지 않습니다. 이벤트는 bounded queue에 넣고
백그라운드 스레드가 sink(콘솔, MongoDB)로 씁니다. 큐가 가득 차면 버립니다.
"""

import queue
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional
import pytz
from pydantic import BaseModel, ConfigDict


class SecurityEvent(BaseModel):
    """보안 이벤트 1건 (write-once)"""
    model_config = ConfigDict(frozen=True)

    event_type: str
    client_ip: str
    details: str = ""
    timestamp: datetime

    def to_line(self, tz_name: str = "UTC") -> str:
        """
        한 줄 로그 형식

        예: 2025-01-01T09:00:00+09:00 [SECURITY] rate-limit-exceeded from IP 1.2.3.4 - policy=login
        """
        local = self.timestamp.astimezone(pytz.timezone(tz_name))
        return f"{local.isoformat()} [SECURITY] {self.event_type} from IP {self.client_ip} - {self.details}"


class EventSink(ABC):
    """이벤트 저장 대상"""

    @abstractmethod
    def write(self, event: SecurityEvent) -> None:
        ...


class ConsoleEventSink(EventSink):
    """stdout 한 줄 출력 (로그 수집기가 수집)"""

    def __init__(self, tz_name: str = "UTC"):
        self.tz_name = tz_name

    def write(self, event: SecurityEvent) -> None:
        print(event.to_line(self.tz_name), flush=True)


class MongoEventSink(EventSink):
    """MongoDB 컬렉션에 이벤트 저장"""

    def __init__(self, collection):
        self.collection = collection

    def write(self, event: SecurityEvent) -> None:
        self.collection.insert_one(event.model_dump())


class SecurityEventLog:
    """
    비동기(fire-and-forget) 보안 이벤트 로그

    여러 요청 스레드/태스크에서 동시에 record()를 호출해도 안전합니다.
    """

    def __init__(self, sinks: Optional[List[EventSink]] = None, max_queue: int = 1000):
        """
        Args:
            sinks: 이벤트 sink 목록 (기본값: ConsoleEventSink)
            max_queue: 큐 최대 크기, 초과분은 버림
        """
        self.sinks: List[EventSink] = sinks if sinks is not None else [ConsoleEventSink()]
        self.dropped = 0
        self._queue: "queue.Queue[Optional[SecurityEvent]]" = queue.Queue(maxsize=max_queue)
        self._worker: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def start(self):
        """백그라운드 writer 스레드 시작 (이미 실행 중이면 무시)"""
        with self._start_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run, name="security-event-writer", daemon=True
            )
            self._worker.start()

    def record(self, event_type: str, client_ip: str, details: str = "") -> Optional[SecurityEvent]:
        """
        보안 이벤트 기록 (예외를 발생시키지 않음)

        Args:
            event_type: 이벤트 종류 (예: "rate-limit-exceeded")
            client_ip: 클라이언트 IP
            details: 자유 형식 상세 정보

        Returns:
            큐에 들어간 이벤트, 버려졌으면 None
        """
        try:
            event = SecurityEvent(
                event_type=event_type,
                client_ip=client_ip or "unknown",
                details=str(details)[:1000],
                timestamp=datetime.now(timezone.utc),
            )
            self.start()
            self._queue.put_nowait(event)
            return event
        except queue.Full:
            self.dropped += 1
            print(f"[WARNING] 보안 이벤트 큐가 가득 참, 이벤트 버림: {event_type} from {client_ip}")
        except Exception as e:
            print(f"[ERROR] 보안 이벤트 기록 실패: {e}")
        return None

    def _run(self):
        while True:
            event = self._queue.get()
            try:
                if event is None:
                    return
                for sink in self.sinks:
                    try:
                        sink.write(event)
                    except Exception as e:
                        # 로깅 실패해도 요청 처리는 계속
                        print(f"[ERROR] 보안 이벤트 sink 실패 ({type(sink).__name__}): {e}")
                        print(f"   {event.to_line()}")
            finally:
                self._queue.task_done()

    def flush(self, timeout: float = 5.0) -> bool:
        """
        큐에 쌓인 이벤트가 모두 기록될 때까지 대기

        Returns:
            timeout 안에 모두 기록되면 True
        """
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: float = 5.0):
        """남은 이벤트를 기록하고 writer 스레드 종료"""
        if self._worker is None or not self._worker.is_alive():
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            print("[WARNING] 보안 이벤트 writer 종료 신호 전달 실패 (큐 가득 참)")
            return
        self._worker.join(timeout)
