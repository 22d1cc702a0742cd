from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import uvicorn
import os
from dotenv import load_dotenv

from security.event_log import ConsoleEventSink, MongoEventSink, SecurityEventLog
from security.ip_utils import get_client_ip, load_trusted_proxies
from security.middleware import SecurityMiddleware
from security.rate_limiter import MongoRateLimitStore, RateLimiter, run_sweeper
from security.validators import InputRejected
from recipes.repository import RecipeRepository
from recipes.routes import router as recipes_router

# 환경 변수 로드
load_dotenv()


def build_security_components():
    """
    환경변수에 따라 rate limiter와 보안 이벤트 로그 생성

    환경변수:
        SECURITY_STORE_BACKEND: "memory" | "mongodb" (기본값: memory)
        SECURITY_EVENT_QUEUE_SIZE: 이벤트 큐 크기 (기본값: 1000)
        SECURITY_LOG_TIMEZONE: 이벤트 로그 타임존 (기본값: UTC)
    """
    sinks = [ConsoleEventSink(os.getenv("SECURITY_LOG_TIMEZONE", "UTC"))]
    store = None

    if os.getenv("SECURITY_STORE_BACKEND", "memory").lower() == "mongodb":
        try:
            from database.mongodb_client import MongoDBClient

            mongo_client = MongoDBClient()
            store = MongoRateLimitStore(mongo_client.get_rate_limits_collection())
            sinks.append(MongoEventSink(mongo_client.get_security_events_collection()))
            print("[INFO] 보안 저장소: MongoDB")
        except Exception as e:
            print(f"[WARNING] MongoDB 보안 저장소 초기화 실패: {e}")
            print("   메모리 저장소를 사용합니다.")

    event_log = SecurityEventLog(sinks, max_queue=int(os.getenv("SECURITY_EVENT_QUEUE_SIZE", "1000")))
    return RateLimiter(store=store), event_log


def request_error_field(errors) -> Optional[str]:
    """
    RequestValidationError에서 문제 필드명 추출

    본문 자체가 JSON 객체로 해석되지 않으면 None
    (예: loc=("body", "ingredients", 0, "ingredient_id") → "ingredient_id")
    """
    for error in errors:
        if error.get("type") == "json_invalid":
            return None

    for error in errors:
        names = [part for part in error.get("loc", ()) if isinstance(part, str) and part != "body"]
        if names:
            return names[-1]
    return None


def create_app(
    rate_limiter: Optional[RateLimiter] = None,
    event_log: Optional[SecurityEventLog] = None,
    repository: Optional[RecipeRepository] = None,
) -> FastAPI:
    """
    애플리케이션 생성

    인자를 생략하면 환경변수 설정으로 구성 요소를 만듭니다 (테스트에서는 직접 주입).
    """
    if rate_limiter is None or event_log is None:
        default_limiter, default_log = build_security_components()
        rate_limiter = rate_limiter or default_limiter
        event_log = event_log or default_log

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """애플리케이션 생명주기 관리"""
        print("[INFO] Recipe Book 서비스를 시작합니다...")
        policies = ", ".join(
            f"{p.name}={p.max_requests}/{int(p.window_seconds)}s" for p in rate_limiter.policies.values()
        )
        print(f"[INFO] Rate limit 정책: {policies}")

        event_log.start()
        stop_event = asyncio.Event()
        sweeper = asyncio.create_task(
            run_sweeper(rate_limiter, float(os.getenv("RATE_LIMIT_SWEEP_INTERVAL", "300")), stop_event)
        )

        yield  # 서비스 실행

        print("[INFO] 서비스를 종료합니다...")
        stop_event.set()
        await sweeper
        event_log.close()
        print("[INFO] 서비스가 안전하게 종료되었습니다.")

    app = FastAPI(
        title="Recipe Book",
        description="레시피, 재료, 태그 관리 API (요청 보안 계층 포함)",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.rate_limiter = rate_limiter
    app.state.security_events = event_log
    app.state.repository = repository or RecipeRepository()

    # 나중에 추가한 미들웨어가 바깥쪽: CORS → 보안 파이프라인 → 라우트
    app.add_middleware(SecurityMiddleware, trusted_proxies=load_trusted_proxies())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        content = {"error": exc.detail}
        if isinstance(exc, InputRejected) and exc.field:
            content["field"] = exc.field
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """
        요청 본문 오류 처리

        - 디코딩할 수 없는 본문 / 객체가 아닌 본문: invalid-json
        - JSON은 정상이지만 필드 타입이 틀린 경우: validation-failed + 필드명
        """
        client_ip = getattr(request.state, "client_ip", None) or get_client_ip(request)
        errors = exc.errors()
        field = request_error_field(errors)

        if field is None:
            event_log.record("invalid-json", client_ip, f"path={request.url.path} errors={len(errors)}")
            return JSONResponse(status_code=400, content={"error": "Invalid JSON data"})

        message = f"Invalid value for {field}"
        event_log.record("validation-failed", client_ip, f"path={request.url.path} field={field} {message}")
        return JSONResponse(status_code=400, content={"error": message, "field": field})

    @app.get("/")
    async def root():
        """루트 엔드포인트 - 서비스 정보를 반환합니다."""
        return {
            "service": "Recipe Book",
            "version": "0.1.0",
            "endpoints": {
                "POST /api/register": "사용자 등록 (register rate limit)",
                "POST /api/login": "로그인 (login rate limit)",
                "GET /api/search": "레시피 검색 (search rate limit)",
                "POST /api/recipes": "레시피 생성",
                "POST /api/ingredients": "재료 생성",
                "POST /api/tags": "태그 생성",
                "POST /api/images": "이미지 등록",
                "GET /health": "서비스 상태 확인",
            },
        }

    @app.get("/health")
    async def health_check():
        """서비스 상태를 확인합니다."""
        return {
            "status": "healthy",
            "rate_limit_store": type(rate_limiter.store).__name__,
            "security_events_dropped": event_log.dropped,
        }

    app.include_router(recipes_router)
    return app


app = create_app()


if __name__ == "__main__":
    print("사용법:")
    print("   1. .env 파일에 RATE_LIMIT_*, TRUSTED_PROXIES 등을 설정하세요 (선택)")
    print("   2. pip install -e . 로 의존성을 설치하세요")
    print("   3. python main.py로 서비스를 시작하세요")
    print("   4. http://localhost:8000/docs에서 API 문서를 확인하세요")
    print()

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_level="info"
    )
