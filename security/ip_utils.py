"""
클라이언트 IP 추출 유틸리티

리버스 프록시(nginx 등) 뒤에서 실제 클라이언트 IP를 추출합니다.
추출된 IP는 rate limiting 키와 보안 이벤트 로그에 사용됩니다.
"""

import os
from typing import Iterable, Optional, Set
from fastapi import Request


def load_trusted_proxies() -> Set[str]:
    """
    TRUSTED_PROXIES 환경변수 로드 (쉼표 구분)

    Returns:
        신뢰하는 프록시 주소 집합. 비어 있으면 모든 요청의 프록시 헤더를 신뢰
    """
    raw = os.getenv("TRUSTED_PROXIES", "")
    return {addr.strip() for addr in raw.split(",") if addr.strip()}


def get_client_ip(request: Request, trusted_proxies: Optional[Iterable[str]] = None) -> str:
    """
    요청에서 클라이언트 IP 추출

    Args:
        request: FastAPI Request 객체
        trusted_proxies: 프록시 헤더를 신뢰할 peer 주소 목록 (None/빈 값이면 항상 신뢰)

    Returns:
        클라이언트 IP 주소 문자열

    우선순위:
        1. X-Forwarded-For 헤더의 첫 번째 주소
        2. X-Real-IP 헤더
        3. request.client.host (포트 제외)
    """
    peer = request.client.host if request.client and request.client.host else ""

    trusted = set(trusted_proxies) if trusted_proxies else set()
    if not trusted or peer in trusted:
        # 첫 번째 IP가 실제 클라이언트 IP
        forwarded_for = request.headers.get("X-Forwarded-For", "")
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

        real_ip = request.headers.get("X-Real-IP", "").strip()
        if real_ip:
            return real_ip

    if peer:
        return peer

    # 최후의 폴백
    return "unknown"
