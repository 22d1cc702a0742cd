"""
Security 모듈

클라이언트 IP 추출, SQL injection/XSS 탐지, 필드 검증, 정책별 rate limiting,
보안 이벤트 로깅, 요청 보안 미들웨어 제공
"""

from .ip_utils import get_client_ip, load_trusted_proxies
from .threat_detector import ThreatDetector, ThreatPattern, default_detector, sanitize_input
from .validators import VALIDATORS, InputRejected, ValidationResult, require_valid, validate_field
from .rate_limiter import (
    InMemoryRateLimitStore,
    MongoRateLimitStore,
    RateLimiter,
    RateLimitExceeded,
    RateLimitPolicy,
    rate_limit_dependency,
    run_sweeper,
)
from .event_log import ConsoleEventSink, MongoEventSink, SecurityEvent, SecurityEventLog
from .middleware import SecurityMiddleware

__all__ = [
    "get_client_ip",
    "load_trusted_proxies",
    "ThreatDetector",
    "ThreatPattern",
    "default_detector",
    "sanitize_input",
    "VALIDATORS",
    "InputRejected",
    "ValidationResult",
    "require_valid",
    "validate_field",
    "InMemoryRateLimitStore",
    "MongoRateLimitStore",
    "RateLimiter",
    "RateLimitExceeded",
    "RateLimitPolicy",
    "rate_limit_dependency",
    "run_sweeper",
    "ConsoleEventSink",
    "MongoEventSink",
    "SecurityEvent",
    "SecurityEventLog",
    "SecurityMiddleware",
]
