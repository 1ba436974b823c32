"""
services/result_sink.py

최종 결과 저장소.

- ResultSink          : submit_result / results_for_user 인터페이스
- InMemoryResultSink  : 테스트 / 단일 프로세스용
- JsonLinesResultSink : 결과 1건 = JSON 1줄 (append only)
- RetryingSubmission  : 스케줄러로 간격을 두는 지수 백오프 재시도. 최종 실패 시 ResultSubmissionError
"""

import logging
import os
import threading
from typing import Callable, List, Optional, Protocol

from pydantic import ValidationError

from timed_exam.models.session_state import ExamResult
from timed_exam.services.timer import Cancellable, Scheduler

logger = logging.getLogger(__name__)


class ResultSubmissionError(RuntimeError):
    """결과 저장 실패. 호출한 쪽은 상태를 버리지 말고 다시 시도해야 한다."""


class ResultSink(Protocol):
    def submit_result(self, result: ExamResult) -> None: ...

    def results_for_user(self, user_id: str) -> List[ExamResult]: ...


class InMemoryResultSink:
    def __init__(self):
        self.results: List[ExamResult] = []

    def submit_result(self, result: ExamResult) -> None:
        self.results.append(result)

    def results_for_user(self, user_id: str) -> List[ExamResult]:
        return [r for r in self.results if r.user_id == user_id]


class JsonLinesResultSink:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def submit_result(self, result: ExamResult) -> None:
        line = result.model_dump_json() + "\n"
        try:
            with self._lock, open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise ResultSubmissionError(f"결과 파일 기록 실패: {e}") from e

    def results_for_user(self, user_id: str) -> List[ExamResult]:
        if not os.path.exists(self.path):
            return []
        results: List[ExamResult] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    result = ExamResult.model_validate_json(line)
                except ValidationError as e:
                    logger.warning(f"{self.path}:{lineno}: 결과 파싱 실패 — {e}")
                    continue
                if result.user_id == user_id:
                    results.append(result)
        return results


def backoff_delay(attempt: int, backoff_base: float) -> float:
    """attempt 번째 실패 뒤 기다릴 시간 (초). 시도마다 2배."""
    return backoff_base * (2 ** (attempt - 1))


class RetryingSubmission:
    """
    결과 저장 + 지수 백오프 재시도.

    재시도 사이의 대기는 scheduler.call_later 로 예약한다. 이벤트 루프를 막지 않는다.
    대기 시간이 0 이면 같은 호출 안에서 바로 다시 시도한다.
    끝나면 on_done(None) (성공) 또는 on_done(ResultSubmissionError) 를 정확히 한 번 호출한다.

    Args:
        sink:         결과 저장소.
        result:       저장할 결과. 재시도마다 같은 객체를 쓴다.
        scheduler:    call_later 를 제공하는 스케줄러.
        on_done:      완료 콜백.
        max_attempts: 최대 시도 횟수.
        backoff_base: 첫 재시도 전 대기 시간 (초).
    """

    def __init__(
        self,
        sink: ResultSink,
        result: ExamResult,
        scheduler: Scheduler,
        on_done: Callable[[Optional[ResultSubmissionError]], None],
        max_attempts: int = 3,
        backoff_base: float = 0.5,
    ):
        if max_attempts < 1:
            raise ValueError(f"시도 횟수는 1 이상이어야 합니다: {max_attempts}")
        self._sink = sink
        self._result = result
        self._scheduler = scheduler
        self._on_done = on_done
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._handle: Optional[Cancellable] = None
        self._finished = False
        self.attempts = 0

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> None:
        if self.attempts == 0:
            self._attempt()

    def cancel(self) -> None:
        """예약된 재시도를 취소한다. on_done 은 호출되지 않는다."""
        self._finished = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _attempt(self) -> None:
        self._handle = None
        while not self._finished:
            self.attempts += 1
            try:
                self._sink.submit_result(self._result)
            except Exception as e:
                # 어떤 저장소 오류든 재시도 대상
                if self.attempts >= self._max_attempts:
                    logger.error(f"결과 저장 최종 실패: {e}")
                    error = e if isinstance(e, ResultSubmissionError) else ResultSubmissionError(str(e))
                    if error is not e:
                        error.__cause__ = e
                    self._finish(error)
                    return
                wait = backoff_delay(self.attempts, self._backoff_base)
                logger.warning(
                    f"결과 저장 실패, {wait:.1f}초 후 재시도 ({self.attempts}/{self._max_attempts}): {e}"
                )
                if wait > 0:
                    self._handle = self._scheduler.call_later(wait, self._attempt)
                    return
                continue
            self._finish(None)
            return

    def _finish(self, error: Optional[ResultSubmissionError]) -> None:
        self._finished = True
        self._on_done(error)
