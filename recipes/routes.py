from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from security.ip_utils import get_client_ip
from security.rate_limiter import rate_limit_dependency
from security.validators import (
    InputRejected,
    ValidationResult,
    validate_email,
    validate_field,
    validate_file_upload,
    validate_ingredient_name,
    validate_password,
    validate_quantity,
    validate_recipe_description,
    validate_recipe_instructions,
    validate_recipe_title,
    validate_search_query,
    validate_serving_unit,
    validate_tag_name,
    validate_unit,
    validate_username,
)

from .repository import RecipeRepository
from .schemas import (
    ImageUploadRequest,
    IngredientCreateRequest,
    LoginRequest,
    RecipeCreateRequest,
    RecipeSummaryModel,
    RegisterRequest,
    TagCreateRequest,
)


router = APIRouter(prefix="/api")


def _repository(request: Request) -> RecipeRepository:
    return request.app.state.repository


def _client_ip(request: Request) -> str:
    return getattr(request.state, "client_ip", None) or get_client_ip(request)


def _record(request: Request, event_type: str, details: str = ""):
    request.app.state.security_events.record(event_type, _client_ip(request), details)


def _reject(request: Request, message: str, field: Optional[str] = None, event_type: str = "validation-failed"):
    """보안 이벤트 1건 기록 후 400"""
    _record(request, event_type, f"path={request.url.path} field={field} {message}")
    raise InputRejected(message, field=field)


def _check(request: Request, result: ValidationResult, event_type: str = "validation-failed"):
    if not result.valid:
        _reject(request, result.message, result.field, event_type)


@router.post("/register", status_code=201, dependencies=[Depends(rate_limit_dependency("register"))])
async def register(payload: RegisterRequest, request: Request):
    """사용자 등록"""
    _check(request, validate_username(payload.username))
    _check(request, validate_email(payload.email))
    _check(request, validate_password(payload.password))

    user = _repository(request).add_user(payload.username.strip(), payload.email.strip(), payload.password)
    if not user:
        _record(request, "registration-failed", f"username={payload.username.strip()} reason=duplicate")
        raise HTTPException(status_code=409, detail="Username or email already exists")

    _record(request, "user-registered", f"username={user['username']}")
    return {"message": "Registration successful", "user": {"id": user["id"], "username": user["username"]}}


@router.post("/login", dependencies=[Depends(rate_limit_dependency("login"))])
async def login(payload: LoginRequest, request: Request):
    """로그인 (토큰/세션 발급은 인증 모듈 담당)"""
    if not payload.username.strip() or not payload.password:
        _reject(request, "Username and password are required", "username", event_type="login-failed")

    # 형식이 틀린 username은 injection 시도로 간주, 상세 사유는 노출하지 않음
    if not validate_username(payload.username).valid:
        _reject(request, "Invalid credentials", "username", event_type="login-failed")

    user = _repository(request).verify_user(payload.username.strip(), payload.password)
    if not user:
        _record(request, "login-failed", f"username={payload.username.strip()}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    _record(request, "login-success", f"username={user['username']}")
    return {"message": "Login successful", "user": {"id": user["id"], "username": user["username"]}}


@router.get("/search", dependencies=[Depends(rate_limit_dependency("search"))])
async def search_recipes(request: Request, q: str = Query("")):
    """레시피 검색"""
    _check(request, validate_search_query(q))

    results = _repository(request).search(q.strip()) if q.strip() else []
    return {
        "query": q.strip(),
        "results": [RecipeSummaryModel(**r).model_dump() for r in results],
        "total": len(results),
    }


@router.post("/recipes", status_code=201)
async def create_recipe(payload: RecipeCreateRequest, request: Request):
    """
    레시피 생성

    모든 필드 검증을 통과해야 저장합니다 (부분 저장 없음).
    """
    repository = _repository(request)

    _check(request, validate_recipe_title(payload.title))
    _check(request, validate_recipe_description(payload.description))
    _check(request, validate_recipe_instructions(payload.instructions))
    _check(request, validate_serving_unit(payload.serving_unit))
    for name in ("prep_time", "cook_time", "servings"):
        _check(request, validate_field(name, getattr(payload, name)))

    for tag_id in payload.tag_ids:
        if not repository.tag_exists(tag_id):
            _reject(request, f"Invalid tag id {tag_id}", "tag_ids")

    for item in payload.ingredients:
        if not repository.ingredient_exists(item.ingredient_id):
            _reject(request, f"Invalid ingredient id {item.ingredient_id}", "ingredients")
        _check(request, validate_quantity(item.quantity))
        _check(request, validate_unit(item.unit))

    recipe = repository.add_recipe({
        "title": payload.title.strip(),
        "description": payload.description.strip(),
        "instructions": payload.instructions.strip(),
        "prep_time": payload.prep_time,
        "cook_time": payload.cook_time,
        "servings": payload.servings,
        "serving_unit": payload.serving_unit.strip() or "people",
        "tag_ids": list(payload.tag_ids),
        "ingredients": [item.model_dump() for item in payload.ingredients],
    })
    _record(request, "recipe-created", f"recipe_id={recipe['id']} title={recipe['title']}")
    return {"message": "Recipe created", "recipe": recipe}


@router.post("/ingredients", status_code=201)
async def create_ingredient(payload: IngredientCreateRequest, request: Request):
    _check(request, validate_ingredient_name(payload.name))
    return {"ingredient": _repository(request).add_ingredient(payload.name.strip())}


@router.post("/tags", status_code=201)
async def create_tag(payload: TagCreateRequest, request: Request):
    _check(request, validate_tag_name(payload.name))
    return {"tag": _repository(request).add_tag(payload.name.strip())}


@router.post("/images", status_code=201)
async def register_image(payload: ImageUploadRequest, request: Request):
    """이미지 메타데이터 등록 (파일 저장은 업로드 서비스 담당)"""
    repository = _repository(request)

    _check(request, validate_file_upload(payload.filename, payload.size))
    if not repository.recipe_exists(payload.recipe_id):
        _reject(request, f"Invalid recipe id {payload.recipe_id}", "recipe_id")

    image = repository.add_image(payload.model_dump())
    return {"image": image}
