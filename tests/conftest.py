import sys
from pathlib import Path

import pytest


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

from fastapi.testclient import TestClient

import api.session as session
from api.app import create_app
from timed_exam.models.question_model import ExamDefinition, Question, QuestionKind
from timed_exam.models.session_state import UserIdentity
from timed_exam.services.catalog import InMemoryExamCatalog
from timed_exam.services.controller import AttemptRegistry, SessionController
from timed_exam.services.draft_store import DraftStoreAdapter, InMemoryDraftStore
from timed_exam.services.identity import StaticIdentityProvider
from timed_exam.services.result_sink import InMemoryResultSink, ResultSubmissionError
from timed_exam.services.timer import SteppedClock


# ============================================================================
# EXAM FIXTURES
# ============================================================================

def make_exam(
    exam_id="exam-1",
    duration_seconds=60,
    passing_marks=4,
    question_count=2,
    marks=5,
    negative_marks=1,
    is_active=True,
) -> ExamDefinition:
    """문제마다 정답이 보기 0 번인 시험."""
    questions = [
        Question(
            id=f"{exam_id}-q{i + 1}",
            question_text=f"Question {i + 1}?",
            options=["A", "B", "C", "D"],
            correct_option_indices={0},
            marks=marks,
            negative_marks=negative_marks,
            explanation=f"Answer to {i + 1} is A.",
        )
        for i in range(question_count)
    ]
    return ExamDefinition(
        id=exam_id,
        title=f"Exam {exam_id}",
        duration_seconds=duration_seconds,
        total_marks=marks * question_count,
        passing_marks=passing_marks,
        questions=questions,
        is_active=is_active,
    )


@pytest.fixture
def two_question_exam():
    """60초, 2문제, 배점 5 / 감점 1."""
    return make_exam()


@pytest.fixture
def mixed_exam():
    return ExamDefinition(
        id="mixed",
        title="Mixed",
        duration_seconds=120,
        total_marks=6,
        passing_marks=3,
        questions=[
            Question(id="m1", question_text="2 + 2?", options=["3", "4"], correct_option_indices={1}, marks=2),
            Question(id="m2", question_text="Sky is blue.", kind=QuestionKind.TRUE_FALSE,
                     correct_option_indices={0}, marks=2, negative_marks=2),
            Question(id="m3", question_text="Pick a vowel", options=["a", "b", "e"],
                     correct_option_indices={0, 2}, marks=2),
        ],
    )


# ============================================================================
# CONTROLLER FIXTURES
# ============================================================================

class FlakyResultSink(InMemoryResultSink):
    """처음 fail_times 번은 실패하는 결과 저장소."""

    def __init__(self, fail_times=0):
        super().__init__()
        self.fail_times = fail_times
        self.calls = 0

    def submit_result(self, result):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ResultSubmissionError("network down")
        super().submit_result(result)


@pytest.fixture
def clock():
    return SteppedClock()


@pytest.fixture
def draft_store():
    return InMemoryDraftStore()


@pytest.fixture
def result_sink():
    return FlakyResultSink()


@pytest.fixture
def identity():
    return StaticIdentityProvider(UserIdentity(user_id="alice", display_name="Alice"))


@pytest.fixture
def catalog(two_question_exam, mixed_exam):
    inactive = make_exam(exam_id="old", is_active=False)
    return InMemoryExamCatalog([two_question_exam, mixed_exam, inactive])


@pytest.fixture
def make_controller(catalog, result_sink, draft_store, identity, clock):
    registry = AttemptRegistry()

    def _make(**overrides):
        kwargs = dict(
            catalog=catalog,
            result_sink=result_sink,
            drafts=DraftStoreAdapter(draft_store),
            identity=identity,
            scheduler=clock,
            registry=registry,
            retry_backoff=0,
            clock=lambda: 1_700_000_000.0,
        )
        kwargs.update(overrides)
        return SessionController(**kwargs)

    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def running(controller):
    """exam-1 을 Run 상태로 시작한 컨트롤러."""
    assert controller.choose_exam("exam-1")
    assert controller.begin()
    return controller


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

@pytest.fixture(autouse=True)
def clear_http_sessions():
    yield
    for state in list(session._sessions.values()):
        controller = state.get("controller")
        if controller is not None:
            controller.dispose()
    session._sessions.clear()
    session._timestamps.clear()


@pytest.fixture
def app(catalog, result_sink, draft_store, clock):
    return create_app(
        catalog=catalog,
        result_sink=result_sink,
        draft_store=draft_store,
        scheduler=clock,
    )


@pytest.fixture
def client(app):
    return TestClient(app)
