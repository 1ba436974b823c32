"""
services/identity.py

현재 사용자 식별. 로그인하지 않았으면 None.
"""

from typing import Optional, Protocol

from timed_exam.models.session_state import UserIdentity


class IdentityProvider(Protocol):
    def current_user(self) -> Optional[UserIdentity]: ...


class StaticIdentityProvider:
    def __init__(self, user: Optional[UserIdentity] = None):
        self._user = user

    def current_user(self) -> Optional[UserIdentity]:
        return self._user

    def login(self, user_id: str, display_name: str = "") -> UserIdentity:
        self._user = UserIdentity(user_id=user_id, display_name=display_name)
        return self._user

    def logout(self) -> None:
        self._user = None
