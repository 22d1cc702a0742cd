from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field


# 필드 형식/길이 검증은 security.validators가 담당 (여기서는 타입만)
# 숫자 필드는 Any: 타입 오류도 검증 레지스트리가 필드명과 함께 거부

class RegisterRequest(BaseModel):
    username: str = ""
    email: str = ""
    password: str = ""


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class RecipeIngredientModel(BaseModel):
    ingredient_id: int
    quantity: Any = None
    unit: str = ""


class RecipeCreateRequest(BaseModel):
    title: str = ""
    description: str = ""
    instructions: str = ""
    prep_time: Any = 0
    cook_time: Any = 0
    servings: Any = 1
    serving_unit: str = ""
    tag_ids: List[int] = Field(default_factory=list)
    ingredients: List[RecipeIngredientModel] = Field(default_factory=list)


class IngredientCreateRequest(BaseModel):
    name: str = ""


class TagCreateRequest(BaseModel):
    name: str = ""


class ImageUploadRequest(BaseModel):
    recipe_id: int
    filename: str = ""
    size: int = Field(0, ge=0)
    caption: Optional[str] = None


class RecipeSummaryModel(BaseModel):
    id: int
    title: str
    description: str = ""
