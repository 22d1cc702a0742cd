"""
필드 입력 검증

사용자 이름, 이메일, 레시피 필드 등 필드별 검증 규칙을 제공합니다.
모든 규칙은 부작용 없는 순수 함수이며 ValidationResult를 반환합니다.
보안 이벤트 기록은 규칙이 아니라 호출하는 핸들러가 담당합니다.
"""

import re
from typing import Any, Callable, Dict, Optional
from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, model_validator

from .threat_detector import ThreatDetector, default_detector


USERNAME_REGEX = re.compile(r"^[a-zA-Z0-9_]{3,30}$")
EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
RECIPE_TITLE_REGEX = re.compile(r"^[^<>]{1,200}$")
TAG_NAME_REGEX = re.compile(r"^[a-zA-Z0-9\s\-]{2,50}$")
INGREDIENT_NAME_REGEX = re.compile(r"^[a-zA-Z0-9\s\-'.,()]{2,100}$")

ALLOWED_UNITS = (
    "tsp", "tbsp", "cup", "ml", "l", "fl oz",
    "g", "kg", "oz", "lb",
    "piece", "clove", "slice", "can",
    "pinch", "dash", "to taste",
)

ALLOWED_SERVING_UNITS = (
    "people", "servings", "portions", "pieces", "slices", "cups", "bowls",
    "glasses", "liters", "ml", "kg", "g", "dozen", "cookies", "muffins", "pancakes",
)

ALLOWED_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_QUANTITY = 10000

# 필드명 → (최소, 최대)
NUMERIC_BOUNDS = {
    "prep_time": (0, 1440),
    "cook_time": (0, 1440),
    "servings": (1, 100),
}


class ValidationResult(BaseModel):
    """검증 결과 (불변)"""
    model_config = ConfigDict(frozen=True)

    valid: bool
    message: str = ""
    field: str

    @model_validator(mode="after")
    def _invalid_requires_message(self):
        if not self.valid and not self.message:
            raise ValueError("invalid result must carry a message")
        return self

    @classmethod
    def ok(cls, field: str) -> "ValidationResult":
        return cls(valid=True, field=field)

    @classmethod
    def fail(cls, field: str, message: str) -> "ValidationResult":
        return cls(valid=False, message=message, field=field)


class InputRejected(HTTPException):
    """필드 검증 실패 / 위험 입력 탐지 예외 (400)"""
    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(status_code=400, detail=message)


def _is_dangerous(text: str, detector: ThreatDetector) -> bool:
    return detector.contains_sql_injection(text) or detector.contains_xss(text)


def validate_username(username: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    username = (username or "").strip()

    if not username:
        return ValidationResult.fail("username", "Username is required")
    if len(username) < 3:
        return ValidationResult.fail("username", "Username must be at least 3 characters long")
    if len(username) > 30:
        return ValidationResult.fail("username", "Username must be no more than 30 characters long")
    if not USERNAME_REGEX.match(username):
        return ValidationResult.fail("username", "Username can only contain letters, numbers, and underscores")
    if _is_dangerous(username, detector):
        return ValidationResult.fail("username", "Invalid characters in username")

    return ValidationResult.ok("username")


def validate_email(email: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    email = (email or "").strip()

    if not email:
        return ValidationResult.fail("email", "Email is required")
    if len(email) > 254:
        return ValidationResult.fail("email", "Email address is too long")
    if not EMAIL_REGEX.match(email):
        return ValidationResult.fail("email", "Please enter a valid email address")
    if _is_dangerous(email, detector):
        return ValidationResult.fail("email", "Invalid characters in email")

    return ValidationResult.ok("email")


def validate_password(password: str) -> ValidationResult:
    # 비밀번호는 공백도 의미가 있으므로 trim 하지 않음
    password = password or ""

    if not password:
        return ValidationResult.fail("password", "Password is required")
    if len(password) < 6:
        return ValidationResult.fail("password", "Password must be at least 6 characters long")
    if len(password) > 128:
        return ValidationResult.fail("password", "Password is too long")

    has_letter = any(ch.isalpha() for ch in password)
    has_number = any(ch.isdigit() for ch in password)
    if not has_letter or not has_number:
        return ValidationResult.fail("password", "Password must contain at least one letter and one number")

    return ValidationResult.ok("password")


def validate_recipe_title(title: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    title = (title or "").strip()

    if not title:
        return ValidationResult.fail("title", "Recipe title is required")
    if len(title) > 200:
        return ValidationResult.fail("title", "Recipe title is too long (maximum 200 characters)")
    if _is_dangerous(title, detector):
        return ValidationResult.fail("title", "Invalid characters in recipe title")
    if not RECIPE_TITLE_REGEX.match(title):
        return ValidationResult.fail("title", "Recipe title contains invalid characters")

    return ValidationResult.ok("title")


def validate_recipe_description(description: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    description = (description or "").strip()

    if len(description) > 1000:
        return ValidationResult.fail("description", "Recipe description is too long (maximum 1000 characters)")
    if _is_dangerous(description, detector):
        return ValidationResult.fail("description", "Invalid characters in recipe description")

    return ValidationResult.ok("description")


def validate_recipe_instructions(instructions: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    instructions = (instructions or "").strip()

    if not instructions:
        return ValidationResult.fail("instructions", "Recipe instructions are required")
    if len(instructions) < 10:
        return ValidationResult.fail("instructions", "Recipe instructions must be at least 10 characters long")
    if len(instructions) > 10000:
        return ValidationResult.fail("instructions", "Recipe instructions are too long (maximum 10,000 characters)")
    if _is_dangerous(instructions, detector):
        return ValidationResult.fail("instructions", "Invalid characters in recipe instructions")

    return ValidationResult.ok("instructions")


def validate_tag_name(name: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    name = (name or "").strip()

    if not name:
        return ValidationResult.fail("name", "Tag name is required")
    if len(name) < 2:
        return ValidationResult.fail("name", "Tag name must be at least 2 characters long")
    if len(name) > 50:
        return ValidationResult.fail("name", "Tag name is too long (maximum 50 characters)")
    if _is_dangerous(name, detector):
        return ValidationResult.fail("name", "Invalid characters in tag name")
    if not TAG_NAME_REGEX.match(name):
        return ValidationResult.fail("name", "Tag name can only contain letters, numbers, spaces, and hyphens")

    return ValidationResult.ok("name")


def validate_ingredient_name(name: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    name = (name or "").strip()

    if not name:
        return ValidationResult.fail("name", "Ingredient name is required")
    if len(name) < 2:
        return ValidationResult.fail("name", "Ingredient name must be at least 2 characters long")
    if len(name) > 100:
        return ValidationResult.fail("name", "Ingredient name is too long (maximum 100 characters)")
    if _is_dangerous(name, detector):
        return ValidationResult.fail("name", "Invalid characters in ingredient name")
    if not INGREDIENT_NAME_REGEX.match(name):
        return ValidationResult.fail("name", "Ingredient name contains invalid characters")

    return ValidationResult.ok("name")


def validate_search_query(query: str, detector: ThreatDetector = default_detector) -> ValidationResult:
    query = (query or "").strip()

    if len(query) > 200:
        return ValidationResult.fail("search", "Search query is too long")
    if _is_dangerous(query, detector):
        return ValidationResult.fail("search", "Invalid characters in search query")

    return ValidationResult.ok("search")


def validate_numeric(value: Any, minimum: int, maximum: int, field: str) -> ValidationResult:
    """
    범위가 있는 정수 필드 검증

    Args:
        value: 검증할 값 (bool은 정수로 취급하지 않음)
        minimum: 허용 최솟값
        maximum: 허용 최댓값
        field: 필드명 (예: "prep_time")
    """
    label = field.replace("_", " ").capitalize()

    if isinstance(value, bool) or not isinstance(value, int):
        return ValidationResult.fail(field, f"{label} must be a whole number")
    if value < minimum:
        return ValidationResult.fail(field, f"{label} must be at least {minimum}")
    if value > maximum:
        return ValidationResult.fail(field, f"{label} must be no more than {maximum}")

    return ValidationResult.ok(field)


def _bounded(field: str) -> Callable[[Any], ValidationResult]:
    minimum, maximum = NUMERIC_BOUNDS[field]
    return lambda value: validate_numeric(value, minimum, maximum, field)


def validate_quantity(quantity: Any) -> ValidationResult:
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        return ValidationResult.fail("quantity", "Quantity must be a number")
    if quantity != quantity or quantity <= 0:  # NaN 포함
        return ValidationResult.fail("quantity", "Quantity must be greater than 0")
    if quantity > MAX_QUANTITY:
        return ValidationResult.fail("quantity", "Quantity is too large")

    return ValidationResult.ok("quantity")


def validate_unit(unit: str) -> ValidationResult:
    unit = (unit or "").strip()

    if not unit:
        return ValidationResult.fail("unit", "Unit is required")
    if unit.lower() in ALLOWED_UNITS:
        return ValidationResult.ok("unit")

    return ValidationResult.fail("unit", "Invalid unit")


def validate_serving_unit(unit: str) -> ValidationResult:
    unit = (unit or "").strip() or "people"

    if unit.lower() in ALLOWED_SERVING_UNITS:
        return ValidationResult.ok("serving_unit")

    return ValidationResult.fail("serving_unit", "Invalid serving unit")


def validate_file_upload(filename: str, size: int) -> ValidationResult:
    """이미지 업로드 파일명/크기 검증 (저장은 호출자 책임)"""
    if size > MAX_IMAGE_BYTES:
        return ValidationResult.fail("file", "File is too large (maximum 5MB)")

    filename = filename or ""
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    ext = basename[basename.rfind("."):].lower() if "." in basename else ""
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        return ValidationResult.fail("file", "Invalid file type. Only images are allowed (JPG, PNG, GIF, WebP)")

    if ".." in filename or "/" in filename or "\\" in filename:
        return ValidationResult.fail("file", "Invalid filename")

    return ValidationResult.ok("file")


# 키는 레지스트리 이름, ValidationResult.field는 요청 payload의 키
# (tag_name, ingredient_name은 payload에서 "name")
VALIDATORS: Dict[str, Callable[[Any], ValidationResult]] = {
    "username": validate_username,
    "email": validate_email,
    "password": validate_password,
    "title": validate_recipe_title,
    "description": validate_recipe_description,
    "instructions": validate_recipe_instructions,
    "tag_name": validate_tag_name,
    "ingredient_name": validate_ingredient_name,
    "prep_time": _bounded("prep_time"),
    "cook_time": _bounded("cook_time"),
    "servings": _bounded("servings"),
    "quantity": validate_quantity,
    "unit": validate_unit,
    "serving_unit": validate_serving_unit,
    "search": validate_search_query,
}


def validate_field(name: str, value: Any) -> ValidationResult:
    """
    레지스트리에서 이름으로 검증 규칙 실행

    Raises:
        KeyError: 등록되지 않은 필드명
    """
    return VALIDATORS[name](value)


def require_valid(result: ValidationResult) -> None:
    """검증 실패 시 InputRejected 발생"""
    if not result.valid:
        raise InputRejected(result.message, field=result.field)
