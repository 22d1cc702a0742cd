"""
IP 기반 Rate Limiting

정책(general, login, register, search)별로 고정 윈도우 카운터를 유지합니다.
카운터 저장소는 주입 가능하며 기본값은 프로세스 메모리, 선택적으로 MongoDB를
사용해 여러 인스턴스가 카운터를 공유할 수 있습니다.

고정 윈도우 특성상 윈도우 경계에서 최대 2 x max_requests 요청이 연속으로
허용될 수 있습니다 (알려진 제약).
"""

import asyncio
import os
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple
from fastapi import HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ReturnDocument

from .ip_utils import get_client_ip


class RateLimitPolicy(BaseModel):
    """이름 있는 rate limit 설정 (정적)"""
    model_config = ConfigDict(frozen=True)

    name: str
    max_requests: int = Field(..., gt=0)
    window_seconds: float = Field(..., gt=0)


class RateLimitEntry(BaseModel):
    """키(클라이언트:정책)별 카운터"""
    key: str
    count: int = 0
    window_start: float = 0.0


DEFAULT_POLICIES: Dict[str, RateLimitPolicy] = {
    "general": RateLimitPolicy(name="general", max_requests=100, window_seconds=60),
    "login": RateLimitPolicy(name="login", max_requests=5, window_seconds=15 * 60),
    "register": RateLimitPolicy(name="register", max_requests=3, window_seconds=60 * 60),
    "search": RateLimitPolicy(name="search", max_requests=30, window_seconds=60),
}

# 부하 테스트/초기 운영용 완화 설정
LIGHT_POLICIES: Dict[str, RateLimitPolicy] = {
    "general": RateLimitPolicy(name="general", max_requests=200, window_seconds=60),
    "login": RateLimitPolicy(name="login", max_requests=8, window_seconds=15 * 60),
    "register": RateLimitPolicy(name="register", max_requests=5, window_seconds=60 * 60),
    "search": RateLimitPolicy(name="search", max_requests=50, window_seconds=60),
}

MIN_RETENTION_SECONDS = 30 * 60


def load_policies() -> Dict[str, RateLimitPolicy]:
    """
    환경변수에서 정책 로드

    환경변수:
        RATE_LIMIT_PROFILE: "default" | "light" (기본값: default)
        RATE_LIMIT_<POLICY>_MAX: 윈도우당 최대 요청 수 (예: RATE_LIMIT_LOGIN_MAX=5)
        RATE_LIMIT_<POLICY>_WINDOW: 윈도우 길이 (초)
    """
    profile = os.getenv("RATE_LIMIT_PROFILE", "default").strip().lower()
    base = LIGHT_POLICIES if profile == "light" else DEFAULT_POLICIES

    policies = {}
    for name, policy in base.items():
        prefix = f"RATE_LIMIT_{name.upper()}"
        policies[name] = RateLimitPolicy(
            name=name,
            max_requests=int(os.getenv(f"{prefix}_MAX", str(policy.max_requests))),
            window_seconds=float(os.getenv(f"{prefix}_WINDOW", str(policy.window_seconds))),
        )
    return policies


class RateLimitStore(ABC):
    """
    카운터 저장소 인터페이스

    increment()는 "조회 → 윈도우 만료 확인 → 리셋 또는 증가"를 원자적으로
    수행해야 합니다. 동시 요청이 같은 이전 값을 보고 카운트를 잃으면 안 됩니다.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[RateLimitEntry]:
        ...

    @abstractmethod
    def upsert(self, entry: RateLimitEntry) -> None:
        ...

    @abstractmethod
    def increment(self, key: str, window_seconds: float, now: float) -> RateLimitEntry:
        """고정 윈도우 1회 진행 후 갱신된 엔트리 반환"""

    @abstractmethod
    def sweep(self, older_than: float) -> int:
        """window_start가 older_than 이전인 엔트리 삭제, 삭제 개수 반환"""


class InMemoryRateLimitStore(RateLimitStore):
    """단일 프로세스용 저장소 (단일 lock)"""

    def __init__(self):
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[RateLimitEntry]:
        with self._lock:
            entry = self._entries.get(key)
            return entry.model_copy() if entry else None

    def upsert(self, entry: RateLimitEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry.model_copy()

    def increment(self, key: str, window_seconds: float, now: float) -> RateLimitEntry:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now - entry.window_start >= window_seconds:
                entry = RateLimitEntry(key=key, count=1, window_start=now)
                self._entries[key] = entry
            else:
                entry.count += 1
            return entry.model_copy()

    def sweep(self, older_than: float) -> int:
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.window_start < older_than]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MongoRateLimitStore(RateLimitStore):
    """
    MongoDB 기반 저장소 (여러 인스턴스가 카운터 공유)

    문서 형식: {"_id": key, "count": int, "window_start": float}
    increment()는 update pipeline + find_one_and_update로 문서 단위 원자성을 보장합니다.
    """

    def __init__(self, collection):
        self.collection = collection

    def get(self, key: str) -> Optional[RateLimitEntry]:
        doc = self.collection.find_one({"_id": key})
        if not doc:
            return None
        return RateLimitEntry(key=key, count=doc["count"], window_start=doc["window_start"])

    def upsert(self, entry: RateLimitEntry) -> None:
        self.collection.replace_one(
            {"_id": entry.key},
            {"count": entry.count, "window_start": entry.window_start},
            upsert=True,
        )

    def increment(self, key: str, window_seconds: float, now: float) -> RateLimitEntry:
        # 새 문서이거나 윈도우가 지났으면 리셋
        expired = {
            "$or": [
                {"$eq": [{"$type": "$window_start"}, "missing"]},
                {"$gte": [{"$subtract": [now, "$window_start"]}, window_seconds]},
            ]
        }
        doc = self.collection.find_one_and_update(
            {"_id": key},
            [
                {
                    "$set": {
                        "count": {"$cond": [expired, 1, {"$add": ["$count", 1]}]},
                        "window_start": {"$cond": [expired, now, "$window_start"]},
                    }
                }
            ],
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return RateLimitEntry(key=key, count=doc["count"], window_start=doc["window_start"])

    def sweep(self, older_than: float) -> int:
        result = self.collection.delete_many({"window_start": {"$lt": older_than}})
        return result.deleted_count


class RateLimiter:
    """정책별 고정 윈도우 Rate Limiter"""

    def __init__(
        self,
        policies: Optional[Dict[str, RateLimitPolicy]] = None,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            policies: 정책 이름 → RateLimitPolicy (기본값: load_policies())
            store: 카운터 저장소 (기본값: InMemoryRateLimitStore)
            clock: 현재 시각(epoch 초) 함수, 테스트에서 교체
        """
        self.policies = policies if policies is not None else load_policies()
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock

    def check_rate_limit(self, client_key: str, policy_name: str) -> Tuple[bool, int, float]:
        """
        요청 1회를 카운트하고 허용 여부 확인

        Args:
            client_key: 클라이언트 식별자 (IP)
            policy_name: 정책 이름

        Returns:
            (is_allowed, remaining_requests, reset_at):
                - is_allowed: 요청 허용 여부
                - remaining_requests: 윈도우 내 남은 요청 수
                - reset_at: 윈도우가 끝나는 시각 (epoch 초)

        Raises:
            KeyError: 등록되지 않은 정책 이름

        Note:
            저장소 갱신에 실패하면 요청을 거부합니다 (fail closed)
        """
        policy = self.policies[policy_name]
        key = f"{client_key}:{policy.name}"
        now = self.clock()

        try:
            entry = self.store.increment(key, policy.window_seconds, now)
        except Exception as e:
            print(f"[ERROR] Rate limit 카운터 갱신 실패 (key={key}): {e}")
            print("   요청을 거부합니다 (fail closed)")
            return (False, 0, now + policy.window_seconds)

        is_allowed = entry.count <= policy.max_requests
        remaining = max(policy.max_requests - entry.count, 0)
        return (is_allowed, remaining, entry.window_start + policy.window_seconds)

    def allow(self, client_key: str, policy_name: str) -> bool:
        return self.check_rate_limit(client_key, policy_name)[0]

    def retention_seconds(self) -> float:
        """스윕 보존 기간: 가장 긴 윈도우의 2배 (최소 30분)"""
        longest = max((p.window_seconds for p in self.policies.values()), default=0)
        return max(longest * 2, MIN_RETENTION_SECONDS)

    def sweep(self) -> int:
        """보존 기간이 지난 카운터 삭제"""
        return self.store.sweep(self.clock() - self.retention_seconds())


async def run_sweeper(limiter: RateLimiter, interval: float, stop_event: asyncio.Event):
    """
    주기적으로 오래된 카운터를 정리하는 백그라운드 태스크

    요청 처리와 독립적으로 실행되며 stop_event가 설정되면 종료합니다.
    """
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass

        try:
            removed = await asyncio.to_thread(limiter.sweep)
            if removed:
                print(f"[INFO] Rate limit 카운터 {removed}개 정리")
        except Exception as e:
            print(f"[ERROR] Rate limit 스윕 실패: {e}")


class RateLimitExceeded(HTTPException):
    """Rate limit 초과 예외 (429)"""
    def __init__(self, policy: RateLimitPolicy, reset_at: float, now: float):
        retry_after = max(int(reset_at - now), 0)
        self.policy = policy
        super().__init__(
            status_code=429,
            detail="Too many requests. Please slow down and try again later.",
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(policy.max_requests),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(reset_at)),
            },
        )


def enforce_rate_limit(limiter: RateLimiter, event_log, client_ip: str, policy_name: str, path: str = "") -> int:
    """
    정책 검사 후 초과 시 보안 이벤트 기록 + RateLimitExceeded 발생

    Returns:
        남은 요청 수
    """
    is_allowed, remaining, reset_at = limiter.check_rate_limit(client_ip, policy_name)
    if not is_allowed:
        policy = limiter.policies[policy_name]
        event_log.record(
            "rate-limit-exceeded",
            client_ip,
            f"policy={policy.name} limit={policy.max_requests}/{int(policy.window_seconds)}s path={path}",
        )
        raise RateLimitExceeded(policy, reset_at, limiter.clock())
    return remaining


def rate_limit_dependency(policy_name: str):
    """
    라우트별 rate limit FastAPI dependency 생성

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit_dependency("login"))])
        async def login():
            ...

    Raises:
        RateLimitExceeded: 429 if rate limit exceeded
    """
    # 일반 def: FastAPI가 threadpool에서 실행하므로 저장소 I/O가 이벤트 루프를 막지 않음
    def dependency(request: Request):
        client_ip = getattr(request.state, "client_ip", None) or get_client_ip(request)
        remaining = enforce_rate_limit(
            request.app.state.rate_limiter,
            request.app.state.security_events,
            client_ip,
            policy_name,
            request.url.path,
        )
        # 로깅용
        request.state.rate_limit_remaining = remaining

    return dependency
