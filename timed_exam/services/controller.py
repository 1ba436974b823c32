"""
services/controller.py

시험 세션 상태 머신: Select → Brief → Run → Finish (→ Select).

- 현재 화면(phase)은 SelectView | BriefView | RunView | FinishView 중 하나
- 모든 phase 전환은 _transition() 하나를 거치며, _TRANSITIONS 에 없는 전환은 IllegalTransitionError
- Run 에 있는 동안만 타이머 / 화면 이탈 감시 / SessionState 가 살아 있다
- 제출은 한 번만 일어난다 (타이머 만료와 수동 제출이 겹쳐도 결과는 1건)

UI 코드 없음. 모든 메서드는 동기 함수이며 하나의 이벤트 루프에서만 호출한다.
"""

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel

from config import RESULT_RETRY_BACKOFF, RESULT_SUBMIT_ATTEMPTS
from timed_exam.models.question_model import ExamDefinition
from timed_exam.models.session_state import (
    DraftSnapshot,
    ExamResult,
    SessionState,
    UserIdentity,
    empty_state,
)
from timed_exam.services import ledger
from timed_exam.services.catalog import ExamCatalog
from timed_exam.services.draft_store import DraftStoreAdapter, draft_key
from timed_exam.services.exam_service import build_result
from timed_exam.services.identity import IdentityProvider
from timed_exam.services.integrity import FocusLossSignal, IntegrityMonitor
from timed_exam.services.result_sink import ResultSink, ResultSubmissionError, RetryingSubmission
from timed_exam.services.timer import DeadlineTimer, Scheduler

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    SELECT = "select"
    BRIEF = "brief"
    RUN = "run"
    FINISH = "finish"


class IllegalTransitionError(RuntimeError):
    """현재 phase 에서 허용되지 않는 작업."""


class SessionLockedError(RuntimeError):
    """제출이 시작된 뒤 답안을 바꾸려는 경우."""


class SessionClosedError(RuntimeError):
    """dispose() 된 컨트롤러를 다시 사용하려는 경우."""


_TRANSITIONS: Dict[Tuple[Phase, str], Phase] = {
    (Phase.SELECT, "choose_exam"): Phase.BRIEF,
    (Phase.BRIEF, "back"): Phase.SELECT,
    (Phase.BRIEF, "begin"): Phase.RUN,
    (Phase.RUN, "submit"): Phase.FINISH,
    (Phase.FINISH, "restart"): Phase.SELECT,
}


def next_phase(phase: Phase, action: str) -> Phase:
    try:
        return _TRANSITIONS[(phase, action)]
    except KeyError:
        raise IllegalTransitionError(
            f"'{phase.value}' 상태에서는 '{action}' 을(를) 할 수 없습니다."
        ) from None


# ── phase 별 화면 상태 ───────────────────────────────────────────────────────

class SelectView(BaseModel):
    phase: Literal[Phase.SELECT] = Phase.SELECT
    pending_exam_id: Optional[str] = None   # 로그인 후 이어서 선택할 시험


class BriefView(BaseModel):
    phase: Literal[Phase.BRIEF] = Phase.BRIEF
    exam: ExamDefinition


class RunView(BaseModel):
    phase: Literal[Phase.RUN] = Phase.RUN
    exam: ExamDefinition
    user: UserIdentity
    state: SessionState
    resumed: bool = False


class FinishView(BaseModel):
    phase: Literal[Phase.FINISH] = Phase.FINISH
    exam: ExamDefinition
    result: ExamResult


ControllerView = Union[SelectView, BriefView, RunView, FinishView]


class AttemptRegistry:
    """프로세스 안에서 (시험, 사용자) 당 진행 중인 응시를 하나로 제한."""

    def __init__(self):
        self._active: Set[str] = set()

    def acquire(self, key: str) -> bool:
        if key in self._active:
            return False
        self._active.add(key)
        return True

    def release(self, key: str) -> None:
        self._active.discard(key)

    def __contains__(self, key: str) -> bool:
        return key in self._active


def _draft_fits(draft: DraftSnapshot, exam: ExamDefinition) -> bool:
    """임시저장의 인덱스가 모두 현재 시험 구성 안에 있는지."""
    total = exam.question_count
    if not 0 <= draft.current_index < total:
        return False
    for q_idx, opt_idx in draft.answers.items():
        if not 0 <= q_idx < total:
            return False
        if not 0 <= opt_idx < len(exam.questions[q_idx].options):
            return False
    return all(0 <= idx < total for idx in draft.marked_for_review)


class SessionController:
    """
    응시자 한 명의 시험 세션 상태 머신.

    Args:
        catalog:         시험 카탈로그.
        result_sink:     최종 결과 저장소.
        drafts:          임시저장 어댑터.
        identity:        현재 사용자 제공자.
        scheduler:       타이머 틱 스케줄러 (asyncio 루프 / SteppedClock).
        focus_signal:    화면 이탈 이벤트 소스. 없으면 새로 만든다.
        registry:        프로세스 공용 AttemptRegistry. 없으면 컨트롤러 전용.
        submit_attempts: 결과 저장 최대 시도 횟수.
        retry_backoff:   재시도 대기 기본값 (초).
    """

    def __init__(
        self,
        catalog: ExamCatalog,
        result_sink: ResultSink,
        drafts: DraftStoreAdapter,
        identity: IdentityProvider,
        scheduler: Scheduler,
        focus_signal: Optional[FocusLossSignal] = None,
        registry: Optional[AttemptRegistry] = None,
        submit_attempts: int = RESULT_SUBMIT_ATTEMPTS,
        retry_backoff: float = RESULT_RETRY_BACKOFF,
        clock: Callable[[], float] = time.time,
    ):
        self._catalog = catalog
        self._sink = result_sink
        self._drafts = drafts
        self._identity = identity
        self._scheduler = scheduler
        self.focus_signal = focus_signal if focus_signal is not None else FocusLossSignal()
        self._registry = registry if registry is not None else AttemptRegistry()
        self._submit_attempts = submit_attempts
        self._retry_backoff = retry_backoff
        self._clock = clock

        self._view: ControllerView = SelectView()
        self._timer: Optional[DeadlineTimer] = None
        self._monitor: Optional[IntegrityMonitor] = None
        self._pending_result: Optional[ExamResult] = None
        self._submission: Optional[RetryingSubmission] = None
        self._submitting = False
        self._closed = False

        self.message: Optional[str] = None       # 사용자에게 보여줄 안내
        self.auth_required = False
        self.last_error: Optional[Exception] = None

    # ── 조회 ────────────────────────────────────────────────────────────────

    @property
    def view(self) -> ControllerView:
        return self._view

    @property
    def phase(self) -> Phase:
        return self._view.phase

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exam(self) -> Optional[ExamDefinition]:
        return getattr(self._view, "exam", None)

    @property
    def state(self) -> Optional[SessionState]:
        return self._view.state if isinstance(self._view, RunView) else None

    @property
    def result(self) -> Optional[ExamResult]:
        return self._view.result if isinstance(self._view, FinishView) else None

    @property
    def submitting(self) -> bool:
        """결과 저장(재시도 대기 포함)이 진행 중인지."""
        return self._submitting

    @property
    def submission_failed(self) -> bool:
        """결과 저장이 최종 실패해 재제출을 기다리는 중인지."""
        return (
            self._pending_result is not None
            and not self._submitting
            and isinstance(self._view, RunView)
        )

    @property
    def timer_running(self) -> bool:
        return self._timer is not None and self._timer.is_running

    def list_exams(self) -> List[ExamDefinition]:
        return [e for e in self._catalog.list_active_exams() if e.is_active]

    # ── 전환 ────────────────────────────────────────────────────────────────

    def choose_exam(self, exam_id: str) -> bool:
        """Select → Brief. 실패하면 Select 에 머물며 message 를 남긴다."""
        self._require(Phase.SELECT)
        self._clear_message()

        if self._identity.current_user() is None:
            self._stay(SelectView(pending_exam_id=exam_id))
            self._fail_softly("로그인이 필요합니다.", auth_required=True)
            return False

        try:
            exam = self._catalog.get_exam_by_id(exam_id)
        except (LookupError, OSError) as e:
            logger.warning(f"시험 로드 실패 ({exam_id}): {e}")
            exam = None
        if exam is None or not exam.is_active:
            self._stay(SelectView())
            self._fail_softly("시험을 찾을 수 없거나 현재 응시할 수 없는 시험입니다.")
            return False

        logger.info(f"시험 선택: {exam.id} ({exam.title})")
        self._transition("choose_exam", BriefView(exam=exam))
        return True

    def resume_pending_choice(self) -> bool:
        """로그인 전에 고른 시험이 있으면 이어서 선택한다."""
        view = self._view
        if not isinstance(view, SelectView) or view.pending_exam_id is None:
            return False
        return self.choose_exam(view.pending_exam_id)

    def back(self) -> None:
        self._require(Phase.BRIEF)
        self._clear_message()
        self._transition("back", SelectView())

    def begin(self) -> bool:
        """
        Brief → Run.

        임시저장이 있으면 답안/표시/현재 위치를 복구한다.
        타이머는 복구 여부와 관계없이 항상 전체 제한 시간으로 다시 시작한다.
        """
        view = self._require(Phase.BRIEF)
        self._clear_message()
        exam = view.exam

        user = self._identity.current_user()
        if user is None:
            self._transition("back", SelectView(pending_exam_id=exam.id))
            self._fail_softly("로그인이 필요합니다.", auth_required=True)
            return False

        key = draft_key(exam.id, user.user_id)
        if not self._registry.acquire(key):
            self._fail_softly("이미 진행 중인 응시가 있습니다.")
            return False

        state = empty_state(exam.id, user.user_id, exam.duration_seconds)
        resumed = False
        draft = self._drafts.load(key)
        if draft is not None and _draft_fits(draft, exam):
            state.apply_draft(draft)
            resumed = True
        elif draft is not None:
            logger.warning(f"시험 구성과 맞지 않는 임시저장 무시 ({key})")

        self._pending_result = None
        self._timer = DeadlineTimer(
            exam.duration_seconds,
            on_expire=self._on_expire,
            scheduler=self._scheduler,
            on_tick=self._on_tick,
        )
        self._monitor = IntegrityMonitor(self.focus_signal, self.record_violation)

        self._transition("begin", RunView(exam=exam, user=user, state=state, resumed=resumed))
        self._timer.start()
        self._monitor.start()
        logger.info(
            f"응시 시작: {key} ({'임시저장 복구' if resumed else '새 세션'}, "
            f"{exam.duration_seconds}초)"
        )
        return True

    def submit(self) -> Optional[ExamResult]:
        """
        Run → Finish. 채점 → 결과 저장 → 임시저장 삭제 → Finish 순서.

        결과 저장은 RetryingSubmission 이 맡는다. 재시도 대기 중에는 None 을 반환하고
        submitting 이 True 로 남는다 (답안 고정). 저장이 끝나면 Finish 로 전환된다.
        최종 실패하면 Run 에 머문다 (답안 고정, 임시저장 유지).
        다시 호출하면 같은 결과로 저장을 재시도한다.
        이미 Finish 이거나 저장 중이면 아무것도 하지 않고 None.
        """
        self._check_open()
        if isinstance(self._view, FinishView):
            logger.info("이미 제출된 응시 — 무시")
            return None
        view = self._require(Phase.RUN)
        if self._submitting:
            return None

        self._submitting = True
        self._teardown_run()
        if self._pending_result is None:
            self._pending_result = build_result(
                view.exam,
                view.state,
                user_name=view.user.display_name,
                submitted_at=self._clock(),
            )
        self._submission = RetryingSubmission(
            self._sink,
            self._pending_result,
            scheduler=self._scheduler,
            on_done=self._on_submission_done,
            max_attempts=self._submit_attempts,
            backoff_base=self._retry_backoff,
        )
        self._submission.start()
        return self.result

    def restart(self) -> None:
        self._require(Phase.FINISH)
        self._clear_message()
        self._transition("restart", SelectView())

    def dispose(self) -> None:
        """
        화면 이탈/세션 만료 시 정리. 타이머와 감시, 예약된 저장 재시도를 멈추고 임시저장은 남긴다.
        이후 이 컨트롤러는 사용할 수 없다.
        """
        if self._closed:
            return
        if self._submission is not None:
            self._submission.cancel()
            self._submission = None
            self._submitting = False
        if isinstance(self._view, RunView):
            self._teardown_run()
            key = draft_key(self._view.exam.id, self._view.user.user_id)
            self._registry.release(key)
            logger.info(f"응시 중단 — 임시저장 유지 ({key})")
        self._closed = True

    # ── 답안 / 이동 ─────────────────────────────────────────────────────────

    def select_answer(self, question_index: int, option_index: int) -> None:
        view = self._editable_run()
        ledger.select_answer(view.state, view.exam, question_index, option_index)
        self._persist(view)

    def clear_answer(self, question_index: int) -> None:
        view = self._editable_run()
        if ledger.clear_answer(view.state, view.exam, question_index):
            self._persist(view)

    def toggle_review(self, question_index: int) -> bool:
        view = self._editable_run()
        marked = ledger.toggle_review(view.state, view.exam, question_index)
        self._persist(view)
        return marked

    def navigate(self, target_index: int) -> None:
        view = self._editable_run()
        ledger.navigate(view.state, view.exam, target_index)
        self._persist(view)

    def next_question(self) -> None:
        view = self._editable_run()
        self.navigate(view.state.current_index + 1)

    def previous_question(self) -> None:
        view = self._editable_run()
        self.navigate(view.state.current_index - 1)

    def record_violation(self) -> None:
        view = self._view
        if self._closed or not isinstance(view, RunView):
            return
        view.state.violation_count += 1
        logger.warning(f"화면 이탈 {view.state.violation_count}회: {view.exam.id}/{view.user.user_id}")

    # ── 내부 ────────────────────────────────────────────────────────────────

    def _transition(self, action: str, view: ControllerView) -> None:
        target = next_phase(self._view.phase, action)
        if view.phase is not target:
            raise IllegalTransitionError(
                f"'{action}' 은(는) '{target.value}' 로 전환해야 합니다 (요청: '{view.phase.value}')."
            )
        logger.debug(f"{self._view.phase.value} → {target.value} ({action})")
        self._view = view

    def _stay(self, view: ControllerView) -> None:
        # 같은 phase 안에서 화면 상태만 갱신
        if view.phase is not self._view.phase:
            raise IllegalTransitionError(f"'{self._view.phase.value}' 상태를 벗어날 수 없습니다.")
        self._view = view

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError("종료된 세션입니다.")

    def _require(self, phase: Phase):
        self._check_open()
        if self._view.phase is not phase:
            raise IllegalTransitionError(
                f"현재 '{self._view.phase.value}' 상태입니다 ('{phase.value}' 상태에서만 가능)."
            )
        return self._view

    def _editable_run(self) -> RunView:
        view = self._require(Phase.RUN)
        if self._submitting or self._pending_result is not None:
            raise SessionLockedError("이미 제출된 시험입니다.")
        return view

    def _persist(self, view: RunView) -> None:
        self._drafts.save(draft_key(view.exam.id, view.user.user_id), view.state.to_draft())

    def _teardown_run(self) -> None:
        if self._timer is not None:
            self._timer.stop()
        if self._monitor is not None:
            self._monitor.stop()

    def _on_tick(self, remaining: int) -> None:
        view = self._view
        if not self._closed and isinstance(view, RunView):
            view.state.remaining_seconds = remaining

    def _on_expire(self) -> None:
        if self._closed or not isinstance(self._view, RunView):
            return
        logger.info(f"시간 종료 — 자동 제출: {self._view.exam.id}/{self._view.user.user_id}")
        self.submit()

    def _on_submission_done(self, error: Optional[ResultSubmissionError]) -> None:
        self._submitting = False
        self._submission = None
        view = self._view
        if self._closed or not isinstance(view, RunView):
            return
        if error is not None:
            self.last_error = error
            self._fail_softly("결과 저장에 실패했습니다. 답안은 보존되어 있으니 다시 제출해 주세요.")
            return

        result = self._pending_result
        key = draft_key(view.exam.id, view.user.user_id)
        self._drafts.clear(key)
        self._registry.release(key)
        self._pending_result = None
        self.last_error = None
        self._clear_message()
        self._transition("submit", FinishView(exam=view.exam, result=result))
        logger.info(
            f"제출 완료: {key} score={result.score}/{result.total_marks} "
            f"{result.status.value} (위반 {result.violation_count}회)"
        )

    def _fail_softly(self, message: str, auth_required: bool = False) -> None:
        self.message = message
        self.auth_required = auth_required
        logger.info(f"안내: {message}")

    def _clear_message(self) -> None:
        self.message = None
        self.auth_required = False
