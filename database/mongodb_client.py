"""
MongoDB 연결 (선택적 보안 저장소)

SECURITY_STORE_BACKEND=mongodb 일 때만 사용합니다.
여러 API 인스턴스가 rate limit 카운터와 보안 이벤트를 공유하기 위한 컬렉션을 제공합니다.
"""

import os
import time
from typing import Optional
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from dotenv import load_dotenv

load_dotenv()


class MongoDBClient:
    """
    보안 저장소용 MongoDB 연결 (프로세스당 1개)

    환경변수:
        MONGODB_URI: connection string (필수)
        MONGODB_DATABASE: 데이터베이스 이름 (기본값: recipe_book)
        MONGODB_COLLECTION_RATE_LIMITS: 카운터 컬렉션 (기본값: rate_limits)
        MONGODB_COLLECTION_SECURITY_EVENTS: 이벤트 컬렉션 (기본값: security_events)
    """

    _instance: Optional["MongoDBClient"] = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, max_retries: int = 3, retry_delay: float = 1.0):
        if self._initialized:
            return

        uri = os.getenv("MONGODB_URI")
        if not uri:
            raise ValueError("MONGODB_URI 환경변수가 설정되지 않았습니다 (.env 확인)")

        self.client = self._connect(uri, max_retries, retry_delay)
        self.db = self.client[os.getenv("MONGODB_DATABASE", "recipe_book")]
        self.rate_limits_name = os.getenv("MONGODB_COLLECTION_RATE_LIMITS", "rate_limits")
        self.security_events_name = os.getenv("MONGODB_COLLECTION_SECURITY_EVENTS", "security_events")
        self._initialized = True

    @staticmethod
    def _connect(uri: str, max_retries: int, retry_delay: float) -> MongoClient:
        """ping이 성공할 때까지 재시도 (exponential backoff)"""
        for attempt in range(1, max_retries + 1):
            client = MongoClient(uri, serverSelectionTimeoutMS=3000, connectTimeoutMS=3000)
            try:
                client.admin.command("ping")
                print(f"[INFO] 보안 저장소 MongoDB 연결 성공 (시도 {attempt}회)")
                return client
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                client.close()
                if attempt == max_retries:
                    raise ConnectionError(f"MongoDB 연결 실패 ({max_retries}회 시도): {e}") from e
                wait_time = retry_delay * (2 ** (attempt - 1))
                print(f"[WARNING] MongoDB 연결 실패, {wait_time}초 후 재시도: {e}")
                time.sleep(wait_time)

    def get_rate_limits_collection(self) -> Collection:
        """rate limit 카운터 컬렉션 (스윕용 window_start 인덱스)"""
        collection = self.db[self.rate_limits_name]
        collection.create_index([("window_start", ASCENDING)])
        return collection

    def get_security_events_collection(self) -> Collection:
        """보안 이벤트 컬렉션 (append-only)"""
        collection = self.db[self.security_events_name]
        collection.create_index([("timestamp", DESCENDING)])
        return collection
