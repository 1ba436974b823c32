"""
services/exam_service.py

채점 및 결과 분석 비즈니스 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
점수는 항상 답안지 전체로부터 다시 계산한다 (증분 갱신 없음).
"""

import time
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from timed_exam.models.question_model import ExamDefinition, Question, QuestionKind
from timed_exam.models.session_state import ExamResult, ResultStatus, SessionState


class ScoreBreakdown(BaseModel):
    score: int
    correct_count: int
    wrong_count: int
    unanswered_count: int

    model_config = {"frozen": True}


def is_correct(question: Question, option_index: int) -> bool:
    """
    선택한 보기가 정답인지 판정한다.

    문제 유형별로 명시적으로 분기한다. 새 유형이 추가되면 여기서 실패해야 한다.
    """
    match question.kind:
        case QuestionKind.MULTIPLE_CHOICE | QuestionKind.TRUE_FALSE:
            return option_index in question.correct_option_indices
        case _:
            raise ValueError(f"지원하지 않는 문제 유형입니다: {question.kind!r}")


def score_answers(
    questions: List[Question],
    answers: Mapping[int, int],
) -> ScoreBreakdown:
    """
    답안지를 채점한다.

    채점 기준:
    - 미응답(키 없음): 0점, 정답/오답 어느 쪽에도 집계하지 않음
    - 정답: +marks
    - 오답: -negative_marks

    Args:
        questions: 채점 대상 Question 리스트 (시험 정의 순서).
        answers:   답안지. {문제 인덱스: 선택한 보기 인덱스}

    Returns:
        ScoreBreakdown. 총점은 음수가 될 수 있으며 0 으로 보정하지 않는다.
    """
    score = 0
    correct = 0
    wrong = 0
    unanswered = 0

    for idx, q in enumerate(questions):
        chosen = answers.get(idx)
        if chosen is None:
            unanswered += 1
        elif is_correct(q, chosen):
            score += q.marks
            correct += 1
        else:
            score -= q.negative_marks
            wrong += 1

    return ScoreBreakdown(
        score=score,
        correct_count=correct,
        wrong_count=wrong,
        unanswered_count=unanswered,
    )


def get_incorrect_questions(
    questions: List[Question],
    answers: Mapping[int, int],
) -> List[Tuple[int, Question]]:
    """
    오답 문제 리스트를 반환한다 (오답 노트용).

    미응답 문제는 포함하지 않는다 — 감점 대상인 "응답했지만 틀린" 문제만.

    Returns:
        [(문제 인덱스, Question), ...] 원본 순서 유지.
    """
    incorrect: List[Tuple[int, Question]] = []

    for idx, q in enumerate(questions):
        chosen = answers.get(idx)
        if chosen is not None and not is_correct(q, chosen):
            incorrect.append((idx, q))

    return incorrect


def is_passed(score: int, passing_marks: int) -> bool:
    """
    합격 여부를 반환한다.

    Args:
        score:         score_answers()가 반환한 총점.
        passing_marks: 합격 기준 점수.

    Returns:
        score >= passing_marks 이면 True (같으면 합격).
    """
    return score >= passing_marks


def build_result(
    exam: ExamDefinition,
    state: SessionState,
    user_name: str = "",
    submitted_at: Optional[float] = None,
) -> ExamResult:
    """진행 상태로부터 최종 ExamResult 를 만든다."""
    breakdown = score_answers(exam.questions, state.answers)
    status = ResultStatus.PASSED if is_passed(breakdown.score, exam.passing_marks) else ResultStatus.FAILED

    answers: Dict[int, int] = dict(state.answers)
    return ExamResult(
        exam_id=exam.id,
        user_id=state.user_id,
        user_name=user_name,
        score=breakdown.score,
        total_marks=exam.total_marks,
        correct_count=breakdown.correct_count,
        wrong_count=breakdown.wrong_count,
        unanswered_count=breakdown.unanswered_count,
        violation_count=state.violation_count,
        status=status,
        answers=answers,
        submitted_at=submitted_at if submitted_at is not None else time.time(),
    )
