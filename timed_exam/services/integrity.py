"""
services/integrity.py

화면 이탈(포커스 상실) 감시.
위반 횟수는 결과에 기록만 하고, 채점이나 강제 제출에는 쓰지 않는다.
"""

import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class FocusLossSignal:
    """호스트 환경의 "포커스 상실" 이벤트 소스. 브라우저 visibilitychange 등을 emit() 으로 전달한다."""

    def __init__(self):
        self._subscribers: List[Callable[[], None]] = []

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """구독하고, 구독 해제 함수를 반환한다."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self) -> None:
        for callback in list(self._subscribers):
            callback()


class IntegrityMonitor:
    def __init__(self, signal: FocusLossSignal, on_violation: Callable[[], None]):
        self._signal = signal
        self._on_violation = on_violation
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._signal.subscribe(self._handle_loss)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_loss(self) -> None:
        logger.info("화면 이탈 감지")
        self._on_violation()
