"""
services/draft_store.py

진행 중인 응시의 임시저장(Draft).

- DraftStore         : 문자열 키-값 저장소 인터페이스 (get / set / delete)
- InMemoryDraftStore : 테스트 / 단일 프로세스용
- FileDraftStore     : 키마다 JSON 파일 하나. 프로세스 재시작에도 유지
- DraftStoreAdapter  : DraftSnapshot 직렬화 + 실패를 "임시저장 없음"으로 처리

여러 탭/프로세스가 같은 키를 쓰면 마지막 쓰기가 이긴다 (잠금 없음).
"""

import hashlib
import json
import logging
import os
import tempfile
import time
from typing import Dict, Optional, Protocol
from urllib.parse import quote

from pydantic import ValidationError

from timed_exam.models.session_state import DraftSnapshot

logger = logging.getLogger(__name__)

_KEY_PREFIX = "draft_"


def _escape(part: str) -> str:
    # "_" 도 인코딩해서 구분자와 겹치지 않게 한다
    return quote(part, safe="").replace("_", "%5F")


def draft_key(exam_id: str, user_id: str) -> str:
    """
    (시험, 사용자) 로부터 결정적으로 키를 만든다.
    각 부분을 퍼센트 인코딩하므로 서로 다른 쌍은 항상 서로 다른 키가 된다.
    """
    return f"exam_{_escape(exam_id)}_{_escape(user_id)}"


class DraftStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryDraftStore:
    def __init__(self):
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._items


class FileDraftStore:
    """디렉터리 아래에 키별 JSON 파일로 저장. 파일 이름은 키의 sha256."""

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self.directory, digest + ".json")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def set(self, key: str, value: str) -> None:
        # 임시 파일에 쓰고 교체. 중간에 끊겨도 이전 내용이 남는다
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, self._path(key))
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def delete(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)


class DraftStoreAdapter:
    """
    DraftSnapshot 저장/복구.

    저장 형식: {"key": <키>, "data": <snapshot>, "timestamp": <저장 시각>}
    읽기/쓰기 실패는 예외로 올리지 않는다. 복구 실패 시 새 세션으로 시작.
    저장된 key 가 요청한 키와 다르면 다른 응시의 임시저장이므로 무시한다.
    """

    def __init__(self, store: DraftStore):
        self._store = store

    def save(self, key: str, snapshot: DraftSnapshot) -> bool:
        payload = json.dumps(
            {"key": key, "data": snapshot.model_dump(mode="json"), "timestamp": time.time()},
            ensure_ascii=False,
        )
        try:
            self._store.set(_KEY_PREFIX + key, payload)
        except Exception as e:
            logger.warning(f"임시저장 실패 ({key}): {e}")
            return False
        return True

    def load(self, key: str) -> Optional[DraftSnapshot]:
        try:
            raw = self._store.get(_KEY_PREFIX + key)
        except Exception as e:
            logger.warning(f"임시저장 읽기 실패 ({key}): {e}")
            return None
        if not raw:
            return None
        try:
            envelope = json.loads(raw)
            if envelope.get("key") != key:
                logger.warning(f"다른 응시의 임시저장 무시 ({key} != {envelope.get('key')})")
                return None
            return DraftSnapshot.model_validate(envelope["data"])
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"손상된 임시저장 무시 ({key}): {e}")
            return None

    def clear(self, key: str) -> bool:
        try:
            self._store.delete(_KEY_PREFIX + key)
        except Exception as e:
            logger.warning(f"임시저장 삭제 실패 ({key}): {e}")
            return False
        return True
