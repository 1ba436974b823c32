"""
services/ledger.py

답안지(Answer Ledger)와 문제 이동 로직.
SessionState 를 직접 수정하는 함수들. 저장(draft)은 호출하는 쪽(Controller)의 책임.
"""

from enum import Enum
from typing import List

from timed_exam.models.question_model import ExamDefinition
from timed_exam.models.session_state import SessionState


class LedgerError(ValueError):
    """문제/보기 인덱스가 범위를 벗어난 경우."""


class PaletteStatus(str, Enum):
    """문제 번호 팔레트 표시 상태. 우선순위: current > marked > answered > unanswered."""

    CURRENT = "current"
    MARKED = "marked"
    ANSWERED = "answered"
    UNANSWERED = "unanswered"


def _check_question_index(exam: ExamDefinition, question_index: int) -> None:
    if not 0 <= question_index < exam.question_count:
        raise LedgerError(
            f"문제 인덱스 {question_index} 가 범위(0~{exam.question_count - 1})를 벗어났습니다."
        )


def select_answer(
    state: SessionState,
    exam: ExamDefinition,
    question_index: int,
    option_index: int,
) -> None:
    """답을 선택한다. 이전 답은 덮어쓴다 (다시 보기 표시 여부와 무관)."""
    _check_question_index(exam, question_index)
    options = exam.questions[question_index].options
    if not 0 <= option_index < len(options):
        raise LedgerError(
            f"보기 인덱스 {option_index} 가 범위(0~{len(options) - 1})를 벗어났습니다."
        )
    state.answers[question_index] = option_index


def clear_answer(state: SessionState, exam: ExamDefinition, question_index: int) -> bool:
    """답을 지운다. 지운 답이 있었으면 True."""
    _check_question_index(exam, question_index)
    return state.answers.pop(question_index, None) is not None


def toggle_review(state: SessionState, exam: ExamDefinition, question_index: int) -> bool:
    """
    다시 보기 표시를 토글한다.

    Returns:
        토글 후 표시 여부.
    """
    _check_question_index(exam, question_index)
    if question_index in state.marked_for_review:
        state.marked_for_review.discard(question_index)
        return False
    state.marked_for_review.add(question_index)
    return True


def navigate(state: SessionState, exam: ExamDefinition, target_index: int) -> None:
    # 방향 제한 없음 (이전 문제로 자유롭게 이동 가능)
    _check_question_index(exam, target_index)
    state.current_index = target_index


def palette_status(state: SessionState, question_index: int) -> PaletteStatus:
    if question_index == state.current_index:
        return PaletteStatus.CURRENT
    if question_index in state.marked_for_review:
        return PaletteStatus.MARKED
    if question_index in state.answers:
        return PaletteStatus.ANSWERED
    return PaletteStatus.UNANSWERED


def palette(state: SessionState, total: int) -> List[PaletteStatus]:
    """전체 문제 번호 팔레트."""
    return [palette_status(state, idx) for idx in range(total)]
