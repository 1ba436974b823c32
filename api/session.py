"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 브라우저에 UUID 세션 ID를 발급하고, 세션별로 로그인 사용자와 SessionController 를 유지.
TTL(기본 1시간) 경과 시 자동 만료. 만료된 세션의 컨트롤러는 dispose() 로 정리한다.
"""

import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from config import SESSION_TTL
from timed_exam.models.session_state import UserIdentity

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_sessions: Dict[str, Dict[str, Any]] = {}
_timestamps: Dict[str, float] = {}


def _new_state() -> Dict[str, Any]:
    return {
        "user": None,          # UserIdentity | None
        "controller": None,    # SessionController | None
    }


def _dispose(state: Dict[str, Any]) -> None:
    controller = state.get("controller")
    if controller is not None:
        controller.dispose()


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> Optional[Dict[str, Any]]:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    expired = None
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            expired = _sessions.pop(sid)
            del _timestamps[sid]
        else:
            _timestamps[sid] = time.time()  # 접근 시 갱신
            return _sessions[sid]
    _dispose(expired)
    return None


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> None:
    """세션 초기화 (로그인 정보는 유지). 진행 중인 응시는 임시저장만 남기고 정리."""
    with _lock:
        if sid not in _sessions:
            return
        old = _sessions[sid]
        _sessions[sid] = _new_state()
        _sessions[sid]["user"] = old.get("user")
        _timestamps[sid] = time.time()
    _dispose(old)


def cleanup_expired() -> int:
    """만료된 세션을 정리. 제거된 수 반환."""
    now = time.time()
    removed: List[Dict[str, Any]] = []
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired:
            removed.append(_sessions.pop(sid))
            del _timestamps[sid]
    for state in removed:
        _dispose(state)
    return len(removed)


class SessionIdentityProvider:
    """쿠키 세션에 저장된 로그인 사용자를 IdentityProvider 로 노출."""

    def __init__(self, sid: str):
        self.sid = sid

    def current_user(self) -> Optional[UserIdentity]:
        return get(self.sid, "user")
