#!/usr/bin/env python3
"""
실행 중인 서버에 대한 보안 계층 스모크 테스트

준비:
    python main.py  (다른 터미널)

사용법:
    python script/security_smoke.py                 # 전체 시나리오
    python script/security_smoke.py --only login    # 로그인 rate limit만
    python script/security_smoke.py --base-url http://localhost:8080

⚠️ login/register 시나리오는 서버의 rate limit 카운터를 소모합니다.
"""

import argparse
import json
import sys
from typing import Any, Dict, Optional

import requests


def pretty_print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def call(method: str, url: str, **kwargs) -> Optional[requests.Response]:
    try:
        resp = requests.request(method, url, timeout=10, **kwargs)
        print(f"[{method}] {url}  →  {resp.status_code}")
        return resp
    except requests.RequestException as e:
        print(f"요청 실패: {e}")
        return None


def scenario_login(base_url: str, client_ip: str) -> bool:
    """login 정책 한도 초과 시 429 확인"""
    print("\n=== 로그인 rate limit ===")
    headers = {"X-Forwarded-For": client_ip}
    statuses = []
    for _ in range(6):
        resp = call("POST", f"{base_url}/api/login", json={"username": "smoke_user", "password": "wrong123"}, headers=headers)
        if resp is None:
            return False
        statuses.append(resp.status_code)

    print(f"상태 코드: {statuses}")
    if statuses[-1] != 429:
        print("❌ 6번째 요청이 429가 아닙니다 (RATE_LIMIT_LOGIN_MAX 설정을 확인하세요)")
        return False
    print("✅ 6번째 로그인 시도 차단")
    return True


def scenario_xss_title(base_url: str, client_ip: str) -> bool:
    """script 태그가 포함된 레시피 제목 거부 확인"""
    print("\n=== 레시피 제목 XSS ===")
    resp = call(
        "POST",
        f"{base_url}/api/recipes",
        json={"title": "<script>alert(1)</script>", "instructions": "Mix everything and bake."},
        headers={"X-Forwarded-For": client_ip},
    )
    if resp is None:
        return False
    pretty_print_json(resp.json())
    ok = resp.status_code == 400
    print("✅ 거부됨" if ok else "❌ 거부되지 않음")
    return ok


def scenario_query_prescreen(base_url: str, client_ip: str) -> bool:
    """쿼리 문자열 SQL injection 사전 차단 확인"""
    print("\n=== 쿼리 문자열 SQL injection ===")
    resp = call(
        "GET",
        f"{base_url}/api/search",
        params={"q": "x' OR 1=1 --"},
        headers={"X-Forwarded-For": client_ip},
    )
    if resp is None:
        return False
    ok = resp.status_code == 400
    print("✅ 거부됨" if ok else "❌ 거부되지 않음")
    return ok


def scenario_headers(base_url: str) -> bool:
    """보안 응답 헤더 확인"""
    print("\n=== 보안 헤더 ===")
    resp = call("GET", f"{base_url}/health")
    if resp is None:
        return False
    missing = [h for h in ("X-Content-Type-Options", "X-Frame-Options", "Content-Security-Policy") if h not in resp.headers]
    if missing:
        print(f"❌ 누락된 헤더: {missing}")
        return False
    print("✅ 보안 헤더 확인")
    return True


SCENARIOS = {
    "headers": lambda base, ip: scenario_headers(base),
    "prescreen": scenario_query_prescreen,
    "xss": scenario_xss_title,
    "login": scenario_login,
}


def main() -> int:
    parser = argparse.ArgumentParser(description="보안 계층 스모크 테스트")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--client-ip", default="203.0.113.10", help="X-Forwarded-For로 보낼 IP")
    parser.add_argument("--only", choices=sorted(SCENARIOS), help="특정 시나리오만 실행")
    args = parser.parse_args()

    names = [args.only] if args.only else list(SCENARIOS)
    results: Dict[str, bool] = {name: SCENARIOS[name](args.base_url, args.client_ip) for name in names}

    print("\n----- 결과 -----")
    for name, ok in results.items():
        print(f"{'✅' if ok else '❌'} {name}")
    return 0 if all(results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
