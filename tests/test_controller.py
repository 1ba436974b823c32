import pytest

from conftest import FlakyResultSink, make_exam
from timed_exam.models.session_state import DraftSnapshot, ResultStatus, UserIdentity
from timed_exam.services.catalog import InMemoryExamCatalog
from timed_exam.services.controller import (
    IllegalTransitionError,
    Phase,
    SessionClosedError,
    SessionLockedError,
    next_phase,
)
from timed_exam.services.draft_store import DraftStoreAdapter, draft_key
from timed_exam.services.identity import StaticIdentityProvider
from timed_exam.services.ledger import LedgerError
from timed_exam.services.result_sink import InMemoryResultSink, ResultSubmissionError

DRAFT = "draft_" + draft_key("exam-1", "alice")


# ============================================================================
# 상태 전환
# ============================================================================

def test_transition_table():
    assert next_phase(Phase.SELECT, "choose_exam") is Phase.BRIEF
    assert next_phase(Phase.BRIEF, "begin") is Phase.RUN
    assert next_phase(Phase.RUN, "submit") is Phase.FINISH
    assert next_phase(Phase.FINISH, "restart") is Phase.SELECT
    with pytest.raises(IllegalTransitionError):
        next_phase(Phase.BRIEF, "submit")
    with pytest.raises(IllegalTransitionError):
        next_phase(Phase.RUN, "back")


def test_actions_outside_their_phase_are_rejected(controller):
    assert controller.phase is Phase.SELECT
    with pytest.raises(IllegalTransitionError):
        controller.begin()
    with pytest.raises(IllegalTransitionError):
        controller.submit()
    with pytest.raises(IllegalTransitionError):
        controller.select_answer(0, 0)
    assert controller.phase is Phase.SELECT


def test_choose_and_back(controller):
    assert [e.id for e in controller.list_exams()] == ["exam-1", "mixed"]

    assert controller.choose_exam("exam-1") is True
    assert controller.phase is Phase.BRIEF
    assert controller.exam.id == "exam-1"
    assert controller.state is None
    assert not controller.timer_running

    controller.back()
    assert controller.phase is Phase.SELECT


@pytest.mark.parametrize("exam_id", ["missing", "old"])
def test_unavailable_exam_stays_in_select(controller, exam_id):
    assert controller.choose_exam(exam_id) is False

    assert controller.phase is Phase.SELECT
    assert controller.message
    assert not controller.auth_required


def test_choice_is_kept_until_login(make_controller):
    identity = StaticIdentityProvider()
    controller = make_controller(identity=identity)

    assert controller.choose_exam("exam-1") is False
    assert controller.auth_required
    assert controller.view.pending_exam_id == "exam-1"

    identity.login("alice", "Alice")
    assert controller.resume_pending_choice() is True
    assert controller.phase is Phase.BRIEF
    assert controller.message is None


def test_begin_without_login_returns_to_select(make_controller):
    identity = StaticIdentityProvider()
    identity.login("alice")
    controller = make_controller(identity=identity)
    controller.choose_exam("exam-1")
    identity.logout()

    assert controller.begin() is False
    assert controller.phase is Phase.SELECT
    assert controller.view.pending_exam_id == "exam-1"
    assert controller.auth_required


# ============================================================================
# 응시 진행
# ============================================================================

def test_begin_starts_fresh_session(running, clock):
    assert running.phase is Phase.RUN
    assert running.state.remaining_seconds == 60
    assert running.state.answers == {}
    assert running.view.resumed is False
    assert running.timer_running

    clock.advance(10)
    assert running.state.remaining_seconds == 50


def test_next_and_previous_question(running):
    running.next_question()
    assert running.state.current_index == 1

    with pytest.raises(LedgerError):
        running.next_question()
    assert running.state.current_index == 1

    running.previous_question()
    assert running.state.current_index == 0


def test_manual_submit_scores_and_finishes(running, result_sink, draft_store):
    running.select_answer(0, 0)     # +5
    running.select_answer(1, 2)     # -1

    result = running.submit()

    assert running.phase is Phase.FINISH
    assert result.score == 4
    assert result.status is ResultStatus.PASSED
    assert result.user_name == "Alice"
    assert result.submitted_at == 1_700_000_000.0
    assert result_sink.results == [result]
    assert DRAFT not in draft_store
    assert not running.timer_running


def test_timer_expiry_submits_automatically(running, clock, result_sink):
    clock.advance(60)

    assert running.phase is Phase.FINISH
    assert running.result.score == 0
    assert running.result.status is ResultStatus.FAILED
    assert running.result.unanswered_count == 2
    assert len(result_sink.results) == 1
    assert clock.pending == 0


def test_manual_submit_before_expiry_cancels_timer(running, clock, result_sink):
    clock.advance(59)
    assert running.submit() is not None

    clock.advance(5)
    assert running.submit() is None

    assert len(result_sink.results) == 1


def test_answers_are_locked_after_finish(running):
    running.submit()

    with pytest.raises(IllegalTransitionError):
        running.select_answer(0, 0)


def test_resume_restores_answers_and_resets_timer(running, make_controller, clock):
    running.select_answer(0, 2)
    running.toggle_review(1)
    running.navigate(1)
    clock.advance(20)
    running.dispose()

    again = make_controller()
    again.choose_exam("exam-1")
    assert again.begin() is True

    assert again.view.resumed is True
    assert again.state.answers == {0: 2}
    assert again.state.marked_for_review == {1}
    assert again.state.current_index == 1
    assert again.state.remaining_seconds == 60


def test_draft_that_does_not_fit_is_ignored(controller, draft_store):
    DraftStoreAdapter(draft_store).save(
        draft_key("exam-1", "alice"),
        DraftSnapshot(answers={5: 0}, current_index=0),
    )
    controller.choose_exam("exam-1")
    controller.begin()

    assert controller.view.resumed is False
    assert controller.state.answers == {}


def test_new_attempt_after_finish_starts_empty(running):
    running.select_answer(0, 0)
    running.submit()
    running.restart()

    running.choose_exam("exam-1")
    running.begin()

    assert running.view.resumed is False
    assert running.state.answers == {}


def test_second_attempt_for_same_user_is_blocked(running, make_controller):
    other = make_controller()
    other.choose_exam("exam-1")

    assert other.begin() is False
    assert other.phase is Phase.BRIEF
    assert other.message


# ============================================================================
# 화면 이탈
# ============================================================================

def test_focus_loss_counted_only_while_running(running):
    running.focus_signal.emit()
    running.focus_signal.emit()
    assert running.state.violation_count == 2

    result = running.submit()
    running.focus_signal.emit()

    assert result.violation_count == 2
    assert running.focus_signal.subscriber_count == 0


def test_record_violation_outside_run_is_ignored(controller):
    controller.record_violation()
    assert controller.phase is Phase.SELECT


# ============================================================================
# 결과 저장 실패
# ============================================================================

def test_failed_submission_keeps_answers_and_can_retry(make_controller, draft_store):
    sink = FlakyResultSink(fail_times=3)
    controller = make_controller(result_sink=sink, submit_attempts=3)
    controller.choose_exam("exam-1")
    controller.begin()
    controller.select_answer(0, 0)

    assert controller.submit() is None
    assert sink.calls == 3
    assert controller.phase is Phase.RUN
    assert controller.submission_failed
    assert isinstance(controller.last_error, ResultSubmissionError)
    assert controller.message
    assert DRAFT in draft_store
    assert not controller.timer_running
    with pytest.raises(SessionLockedError):
        controller.select_answer(1, 0)

    result = controller.submit()

    assert result is not None
    assert result.score == 5
    assert sink.results == [result]
    assert controller.phase is Phase.FINISH
    assert DRAFT not in draft_store
    assert not controller.submission_failed


# ============================================================================
# 정리
# ============================================================================

def test_dispose_stops_timer_and_keeps_draft(running, clock, result_sink, draft_store):
    running.select_answer(0, 1)
    running.dispose()
    running.dispose()

    assert running.closed
    assert clock.pending == 0
    clock.advance(120)
    assert result_sink.results == []
    assert DRAFT in draft_store

    with pytest.raises(SessionClosedError):
        running.select_answer(0, 0)
    with pytest.raises(SessionClosedError):
        running.submit()


# ============================================================================
# 제출 경합 / 저장소 장애
# ============================================================================

class ReentrantSink(InMemoryResultSink):
    """저장 도중에 다시 submit() 을 부르는 결과 저장소."""

    def __init__(self):
        super().__init__()
        self.controller = None
        self.nested = []

    def submit_result(self, result):
        self.nested.append(self.controller.submit())
        super().submit_result(result)


class DownSink(InMemoryResultSink):
    def submit_result(self, result):
        raise RuntimeError("HTTP 503 from results service")


class BrokenDraftStore:
    def get(self, key):
        raise OSError("disk gone")

    def set(self, key, value):
        raise OSError("disk full")

    def delete(self, key):
        raise OSError("read-only")


def test_submit_during_expiry_submission_is_ignored(make_controller, clock):
    sink = ReentrantSink()
    controller = make_controller(result_sink=sink)
    sink.controller = controller
    controller.choose_exam("exam-1")
    controller.begin()

    clock.advance(60)

    assert sink.nested == [None]
    assert len(sink.results) == 1
    assert controller.phase is Phase.FINISH


def test_expiry_and_manual_submit_in_same_tick(running, clock, result_sink):
    clock.advance(59)
    manual = []
    clock.call_later(1, lambda: manual.append(running.submit()))

    clock.advance(1)

    assert manual == [None]
    assert running.phase is Phase.FINISH
    assert len(result_sink.results) == 1


def test_sink_error_on_expiry_reaches_controller(make_controller, clock):
    controller = make_controller(result_sink=DownSink())
    controller.choose_exam("exam-1")
    controller.begin()

    clock.advance(60)

    assert controller.phase is Phase.RUN
    assert controller.submission_failed
    assert isinstance(controller.last_error, ResultSubmissionError)
    assert controller.message


def test_retry_wait_is_scheduled_not_slept(make_controller, clock):
    sink = FlakyResultSink(fail_times=1)
    controller = make_controller(result_sink=sink, retry_backoff=0.5)
    controller.choose_exam("exam-1")
    controller.begin()
    controller.select_answer(0, 0)

    assert controller.submit() is None
    assert controller.submitting
    assert not controller.submission_failed
    assert clock.pending == 1
    with pytest.raises(SessionLockedError):
        controller.select_answer(1, 0)
    assert controller.submit() is None
    assert sink.calls == 1

    clock.advance(0.5)

    assert controller.phase is Phase.FINISH
    assert controller.result.score == 5
    assert len(sink.results) == 1
    assert not controller.submitting


def test_dispose_cancels_scheduled_retry(make_controller, clock, draft_store):
    sink = FlakyResultSink(fail_times=1)
    controller = make_controller(result_sink=sink, retry_backoff=0.5)
    controller.choose_exam("exam-1")
    controller.begin()
    controller.select_answer(0, 0)
    controller.submit()

    controller.dispose()
    clock.advance(5)

    assert sink.calls == 1
    assert sink.results == []
    assert DRAFT in draft_store


def test_draft_store_failure_does_not_interrupt_attempt(make_controller):
    controller = make_controller(drafts=DraftStoreAdapter(BrokenDraftStore()))
    controller.choose_exam("exam-1")
    assert controller.begin() is True
    assert controller.view.resumed is False

    controller.select_answer(0, 1)
    controller.toggle_review(0)
    controller.navigate(1)

    assert controller.state.answers == {0: 1}
    assert controller.state.current_index == 1
    result = controller.submit()
    assert result.answers == {0: 1}


def test_draft_of_another_exam_user_pair_is_not_resumed(make_controller):
    catalog = InMemoryExamCatalog([make_exam(exam_id="a"), make_exam(exam_id="a_b")])

    first = make_controller(catalog=catalog, identity=StaticIdentityProvider(UserIdentity(user_id="b_c")))
    first.choose_exam("a")
    first.begin()
    first.select_answer(0, 3)
    first.navigate(1)
    first.dispose()

    second = make_controller(catalog=catalog, identity=StaticIdentityProvider(UserIdentity(user_id="c")))
    second.choose_exam("a_b")
    second.begin()

    assert second.view.resumed is False
    assert second.state.answers == {}
    assert second.state.current_index == 0
