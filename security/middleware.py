"""
요청 보안 미들웨어

모든 요청에 대해 아래 순서로 처리합니다 (CORS는 main.py의 CORSMiddleware가 가장 바깥).

    1. 보안/캐시 응답 헤더
    2. 요청 로깅
    3. 클라이언트 IP를 request.state.client_ip에 저장
    4. 쿼리 문자열 / form body의 SQL injection, XSS 사전 검사 (400)
    5. general rate limit (429)

라우트별 rate limit(login/register/search)은 rate_limit_dependency가 담당합니다.
거부 시 즉시 응답하고 보안 이벤트를 정확히 1건 기록합니다.
"""

import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .ip_utils import get_client_ip
from .rate_limiter import RateLimitExceeded, enforce_rate_limit
from .threat_detector import SQL_INJECTION, ThreatDetector, ThreatPattern, default_detector


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline' cdnjs.cloudflare.com; "
        "style-src 'self' 'unsafe-inline' cdnjs.cloudflare.com; "
        "img-src 'self' data:; "
        "font-src 'self' cdnjs.cloudflare.com; "
        "object-src 'none'; "
        "base-uri 'self';"
    ),
}

STATIC_CACHE_SECONDS = {
    (".js", ".css", ".woff", ".woff2", ".ttf", ".eot"): 31536000,
    (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg"): 86400,
}

SCANNED_METHODS = ("POST", "PUT", "PATCH")
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def cache_control_for(path: str) -> Optional[str]:
    """경로별 Cache-Control 값 (API는 캐시 금지)"""
    if path.startswith("/api/"):
        return "no-cache, no-store, must-revalidate"
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return None
    ext = last[last.rfind("."):].lower()
    for extensions, seconds in STATIC_CACHE_SECONDS.items():
        if ext in extensions:
            return f"public, max-age={seconds}"
    return "public, max-age=3600"


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    보안 파이프라인 미들웨어

    rate limiter와 이벤트 로그는 app.state(rate_limiter, security_events)에서 가져옵니다.
    """

    def __init__(self, app, detector: Optional[ThreatDetector] = None, trusted_proxies: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.detector = detector or default_detector
        self.trusted_proxies = set(trusted_proxies or ())

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()

        client_ip = get_client_ip(request, self.trusted_proxies)
        request.state.client_ip = client_ip
        request.state.request_time = datetime.now(timezone.utc)

        response = await self._guard(request, call_next, client_ip)

        self._apply_headers(request, response)

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        print(
            f"[INFO] {request.method} {request.url.path} {client_ip} "
            f"{response.status_code} {duration_ms}ms {request.headers.get('user-agent', '-')}"
        )
        return response

    async def _guard(self, request: Request, call_next, client_ip: str) -> Response:
        event_log = request.app.state.security_events

        threat = await self._prescreen(request)
        if threat:
            rule, value = threat
            event_type = "sql-injection-attempt" if rule.category == SQL_INJECTION else "xss-attempt"
            event_log.record(event_type, client_ip, f"rule={rule.name} path={request.url.path} value={value[:200]!r}")
            return JSONResponse(status_code=400, content={"error": "Invalid request"})

        try:
            remaining = await run_in_threadpool(
                enforce_rate_limit, request.app.state.rate_limiter, event_log, client_ip, "general", request.url.path
            )
        except RateLimitExceeded as e:
            return JSONResponse(status_code=e.status_code, content={"error": e.detail}, headers=e.headers)

        request.state.general_remaining = remaining
        return await call_next(request)

    async def _prescreen(self, request: Request) -> Optional[Tuple[ThreatPattern, str]]:
        """쿼리 문자열과 form body 값 중 처음 탐지된 (규칙, 값) 반환"""
        values: List[str] = [value for _, value in request.query_params.multi_items()]

        content_type = request.headers.get("content-type", "")
        media_type = content_type.split(";", 1)[0].strip().lower()
        if request.method in SCANNED_METHODS and media_type == FORM_CONTENT_TYPE:
            body = await request.body()
            values.extend(value for _, value in parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))

        for value in values:
            rule = self.detector.first_match(value)
            if rule:
                return rule, value
        return None

    def _apply_headers(self, request: Request, response: Response):
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)

        # HTTPS일 때만 HSTS
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        cache_control = cache_control_for(request.url.path)
        if cache_control:
            response.headers.setdefault("Cache-Control", cache_control)
            if request.url.path.startswith("/api/"):
                response.headers.setdefault("Pragma", "no-cache")
                response.headers.setdefault("Expires", "0")
