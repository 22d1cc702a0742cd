import threading
import time
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from security.event_log import ConsoleEventSink, EventSink, SecurityEvent, SecurityEventLog


class _BlockingSink(EventSink):
    def __init__(self):
        self.release = threading.Event()

    def write(self, event):
        self.release.wait(5)


class _FailingSink(EventSink):
    def write(self, event):
        raise IOError("disk full")


def test_record_delivers_event_to_sinks(event_log, sink):
    event = event_log.record("rate-limit-exceeded", "203.0.113.7", "policy=login")
    assert event_log.flush()

    assert sink.events == [event]
    assert sink.events[0].client_ip == "203.0.113.7"
    assert sink.events[0].timestamp.tzinfo is not None


def test_console_line_contains_type_ip_and_details(capsys):
    log = SecurityEventLog([ConsoleEventSink()])
    log.record("xss-attempt", "198.51.100.2", "rule=script-block")
    log.flush()
    log.close()

    out = capsys.readouterr().out
    assert "[SECURITY] xss-attempt from IP 198.51.100.2 - rule=script-block" in out


def test_line_uses_configured_timezone():
    event = SecurityEvent(
        event_type="login-failed",
        client_ip="1.2.3.4",
        details="username=bob",
        timestamp=datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc),
    )
    assert event.to_line("Asia/Seoul").startswith("2025-01-01T09:00:00+09:00 [SECURITY] login-failed")


def test_full_queue_drops_instead_of_blocking():
    blocking = _BlockingSink()
    log = SecurityEventLog([blocking], max_queue=1)

    started = time.monotonic()
    results = [log.record("validation-failed", "1.1.1.1", str(i)) for i in range(5)]
    elapsed = time.monotonic() - started

    assert elapsed < 1
    assert log.dropped >= 3
    assert results.count(None) == log.dropped

    blocking.release.set()
    assert log.flush()
    log.close()


def test_sink_failure_is_swallowed_and_other_sinks_still_write(sink, capsys):
    log = SecurityEventLog([_FailingSink(), sink])
    assert log.record("login-failed", "1.2.3.4", "username=bob") is not None
    assert log.flush()
    log.close()

    assert len(sink.events) == 1
    assert "sink 실패" in capsys.readouterr().out


def test_record_never_raises_on_odd_input(event_log, sink):
    event = event_log.record("invalid-json", None, None)
    event_log.flush()
    assert event.client_ip == "unknown"
    assert sink.events[0].details == "None"


def test_events_are_write_once():
    event = SecurityEvent(event_type="x", client_ip="1.1.1.1", timestamp=datetime.now(timezone.utc))
    with pytest.raises(ValidationError):
        event.details = "changed"


def test_concurrent_records_are_all_written(event_log, sink):
    def burst():
        for _ in range(50):
            event_log.record("validation-failed", "10.0.0.1", "x")

    threads = [threading.Thread(target=burst) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert event_log.flush()
    assert len(sink.events) == 400
