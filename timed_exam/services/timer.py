"""
services/timer.py

시험 제한 시간 카운트다운.

- DeadlineTimer : 1초마다 remaining_seconds 를 1씩 줄이고, 0 이 되면 on_expire 를 정확히 한 번 호출
- Scheduler     : call_later(delay, callback) 만 있으면 된다. asyncio 이벤트 루프가 그대로 맞는다.
- SteppedClock  : 테스트용 가짜 시계. advance() 로 시간을 수동으로 흘린다.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Protocol

from config import TIMER_WARNING_SECONDS

logger = logging.getLogger(__name__)

TICK_SECONDS = 1


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class LoopScheduler:
    """현재 실행 중인 asyncio 루프에 예약한다 (서버용)."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        return asyncio.get_running_loop().call_later(delay, callback)


class _ScheduledCall:
    __slots__ = ("when", "seq", "callback", "cancelled")

    def __init__(self, when: float, seq: int, callback: Callable[[], None]):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "_ScheduledCall") -> bool:
        return (self.when, self.seq) < (other.when, other.seq)


class SteppedClock:
    """
    수동으로 진행하는 시계.

    advance(seconds) 동안 만기가 된 콜백을 예약 시각 순서대로 실행한다.
    콜백 안에서 새로 예약된 호출도 구간 안이면 같은 advance 에서 실행된다.
    """

    def __init__(self, start: float = 0.0):
        self.now = start
        self._queue: List[_ScheduledCall] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        call = _ScheduledCall(self.now + delay, next(self._seq), callback)
        heapq.heappush(self._queue, call)
        return call

    @property
    def pending(self) -> int:
        return sum(1 for c in self._queue if not c.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0].when <= target:
            call = heapq.heappop(self._queue)
            if call.cancelled:
                continue
            self.now = call.when
            call.callback()
        self.now = target


class DeadlineTimer:
    """
    세션당 하나만 존재하는 카운트다운 타이머.

    Args:
        duration_seconds: 제한 시간 (양의 정수).
        on_expire:        0 도달 시 한 번만 호출.
        scheduler:        call_later 를 제공하는 스케줄러.
        on_tick:          매 틱마다 남은 시간을 전달받는 콜백 (선택).
    """

    def __init__(
        self,
        duration_seconds: int,
        on_expire: Callable[[], None],
        scheduler: Scheduler,
        on_tick: Optional[Callable[[int], None]] = None,
    ):
        if duration_seconds <= 0:
            raise ValueError(f"제한 시간은 양수여야 합니다: {duration_seconds}")
        self._remaining = duration_seconds
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._scheduler = scheduler
        self._handle: Optional[Cancellable] = None
        self._started = False
        self._stopped = False
        self._expired = False

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    @property
    def has_expired(self) -> bool:
        return self._expired

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._schedule()

    def stop(self) -> None:
        """남은 틱을 취소한다. 여러 번 호출해도 안전."""
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self._scheduler.call_later(TICK_SECONDS, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if self._stopped or self._expired:
            # 정지 이후 도착한 틱은 무시
            return
        self._remaining -= 1
        if self._on_tick is not None:
            self._on_tick(self._remaining)
        if self._remaining > 0:
            self._schedule()
            return
        self._expired = True
        self._stopped = True
        logger.info("제한 시간 종료")
        self._on_expire()


def format_remaining(seconds: int) -> str:
    """남은 시간을 MM:SS 로 표시."""
    seconds = max(0, int(seconds))
    minutes = seconds // 60
    return f"{minutes:02d}:{seconds % 60:02d}"


def is_warning(seconds: int, threshold: int = TIMER_WARNING_SECONDS) -> bool:
    # 마감 임박 경고 (기본 5분 미만)
    return seconds < threshold
