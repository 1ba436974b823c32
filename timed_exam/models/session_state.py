"""
models/session_state.py

시험 진행 상태를 담는 OMR 카드 모델과 결과 / 임시저장 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음.
"""

import time
from enum import Enum
from typing import Dict, List, Set

from pydantic import BaseModel, Field


class SessionState(BaseModel):
    """
    응시 1회(Attempt)의 진행 상태.
    SessionController 가 Run 상태에 있는 동안에만 존재한다.

    Attributes:
        exam_id / user_id:   응시 식별자.
        current_index:       현재 보고 있는 문제 인덱스 (0-based).
        answers:             답안지. {문제 인덱스: 선택한 보기 인덱스}. 키 없음 = 미응답.
        marked_for_review:   "나중에 다시 보기" 표시한 문제 인덱스 집합.
        violation_count:     화면 이탈 횟수 (감소하지 않음).
        remaining_seconds:   남은 시간 (증가하지 않음, 0 에 정확히 한 번 도달).
        started_at:          Run 진입 시각 (Unix timestamp).
    """

    exam_id: str
    user_id: str
    current_index: int = Field(
        default=0,
        ge=0,
        description="현재 풀고 있는 문제 인덱스 (0-based)"
    )
    answers: Dict[int, int] = Field(
        default_factory=dict,
        description="답안지. key: 문제 인덱스, value: 선택한 보기 인덱스"
    )
    marked_for_review: Set[int] = Field(default_factory=set)
    violation_count: int = Field(default=0, ge=0)
    remaining_seconds: int = Field(..., ge=0)
    started_at: float = Field(
        default_factory=time.time,
        description="시험 시작 시각 (Unix timestamp, time.time() 기준)"
    )

    def to_draft(self) -> "DraftSnapshot":
        return DraftSnapshot(
            answers=dict(self.answers),
            marked_for_review=sorted(self.marked_for_review),
            current_index=self.current_index,
        )

    def apply_draft(self, draft: "DraftSnapshot") -> None:
        self.answers = dict(draft.answers)
        self.marked_for_review = set(draft.marked_for_review)
        self.current_index = draft.current_index


class DraftSnapshot(BaseModel):
    """복구 전용 임시저장 스냅샷. 진행 중인 상태와는 독립적으로 저장된다."""

    answers: Dict[int, int] = Field(default_factory=dict)
    marked_for_review: List[int] = Field(default_factory=list)
    current_index: int = Field(default=0, ge=0)


class ResultStatus(str, Enum):
    PASSED = "Passed"
    FAILED = "Failed"


class ExamResult(BaseModel):
    """Result Sink 로 전달되는 최종 결과. 응시 1회당 최대 1번 기록된다."""

    exam_id: str
    user_id: str
    user_name: str = ""
    score: int = Field(..., description="득점 (감점으로 음수 가능, 0 으로 보정하지 않음)")
    total_marks: int
    correct_count: int = Field(..., ge=0)
    wrong_count: int = Field(..., ge=0)
    unanswered_count: int = Field(0, ge=0)
    violation_count: int = Field(0, ge=0)
    status: ResultStatus
    answers: Dict[int, int] = Field(default_factory=dict)
    submitted_at: float = Field(default_factory=time.time)

    model_config = {"frozen": True}

    @property
    def passed(self) -> bool:
        return self.status is ResultStatus.PASSED


class UserIdentity(BaseModel):
    user_id: str = Field(..., min_length=1)
    display_name: str = ""


def empty_state(exam_id: str, user_id: str, duration_seconds: int) -> SessionState:
    """새 응시용 초기 상태."""
    return SessionState(exam_id=exam_id, user_id=user_id, remaining_seconds=duration_seconds)


