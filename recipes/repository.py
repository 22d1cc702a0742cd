"""
레시피북 저장소 (메모리)

사용자, 레시피, 재료, 태그를 프로세스 메모리에 보관합니다.
핸들러는 검증을 모두 통과한 뒤에만 이 저장소에 씁니다.
"""

import hashlib
import secrets
import threading
from typing import Dict, List, Optional


class RecipeRepository:
    """스레드 안전한 메모리 저장소"""

    def __init__(self):
        self._lock = threading.Lock()
        self.users: Dict[str, Dict] = {}
        self.recipes: List[Dict] = []
        self.ingredients: List[Dict] = []
        self.tags: List[Dict] = []
        self.images: List[Dict] = []

    @staticmethod
    def _hash_password(password: str, salt: str) -> str:
        return hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 100_000).hex()

    def add_user(self, username: str, email: str, password: str) -> Optional[Dict]:
        """
        사용자 등록

        Returns:
            생성된 사용자, 이미 존재하는 username/email이면 None
        """
        with self._lock:
            key = username.lower()
            if key in self.users or any(u["email"] == email.lower() for u in self.users.values()):
                return None

            salt = secrets.token_hex(16)
            user = {
                "id": len(self.users) + 1,
                "username": username,
                "email": email.lower(),
                "salt": salt,
                "password_hash": self._hash_password(password, salt),
            }
            self.users[key] = user
            return user

    def verify_user(self, username: str, password: str) -> Optional[Dict]:
        """비밀번호 확인 (constant-time 비교), 실패 시 None"""
        user = self.users.get(username.lower())
        if not user:
            return None
        candidate = self._hash_password(password, user["salt"])
        if not secrets.compare_digest(candidate, user["password_hash"]):
            return None
        return user

    def add_recipe(self, recipe: Dict) -> Dict:
        with self._lock:
            stored = {**recipe, "id": len(self.recipes) + 1}
            self.recipes.append(stored)
            return stored

    def add_ingredient(self, name: str) -> Dict:
        with self._lock:
            stored = {"id": len(self.ingredients) + 1, "name": name}
            self.ingredients.append(stored)
            return stored

    def add_tag(self, name: str) -> Dict:
        with self._lock:
            stored = {"id": len(self.tags) + 1, "name": name}
            self.tags.append(stored)
            return stored

    def add_image(self, image: Dict) -> Dict:
        with self._lock:
            stored = {**image, "id": len(self.images) + 1}
            self.images.append(stored)
            return stored

    def ingredient_exists(self, ingredient_id: int) -> bool:
        return any(i["id"] == ingredient_id for i in self.ingredients)

    def tag_exists(self, tag_id: int) -> bool:
        return any(t["id"] == tag_id for t in self.tags)

    def recipe_exists(self, recipe_id: int) -> bool:
        return any(r["id"] == recipe_id for r in self.recipes)

    def search(self, query: str) -> List[Dict]:
        """제목/설명에 검색어가 포함된 레시피 (대소문자 무시)"""
        needle = query.lower()
        return [
            r for r in self.recipes
            if needle in r["title"].lower() or needle in r.get("description", "").lower()
        ]
