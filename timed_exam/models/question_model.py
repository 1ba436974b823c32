"""
models/question_model.py

시험 정의(ExamDefinition)와 문제(Question) 모델.
카탈로그가 소유하는 불변 데이터. 시험이 시작되면 절대 수정하지 않는다.
"""

from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator

TRUE_FALSE_OPTIONS = ["True", "False"]


class QuestionKind(str, Enum):
    """문제 유형. 단일 선택형만 지원한다."""

    MULTIPLE_CHOICE = "mcq"
    TRUE_FALSE = "true_false"


class Question(BaseModel):
    """
    단일 선택형 문제 모델
    Pydantic v2 적용
    """
    id: str = Field(
        ...,
        min_length=1,
        description="문제 식별자"
    )
    kind: QuestionKind = Field(
        QuestionKind.MULTIPLE_CHOICE,
        description="문제 유형 (mcq / true_false)"
    )
    question_text: str = Field(
        ...,
        min_length=1,
        description="발문/문제 내용"
    )
    options: List[str] = Field(
        default_factory=list,
        validate_default=True,
        description="보기 리스트 (순서 유지)"
    )
    correct_option_indices: Set[int] = Field(
        ...,
        min_length=1,
        description="정답 보기 인덱스 집합 (0-based)"
    )
    marks: int = Field(
        ...,
        gt=0,
        description="정답 시 배점"
    )
    negative_marks: int = Field(
        0,
        ge=0,
        description="오답 시 감점 (미응답은 감점 없음)"
    )
    explanation: Optional[str] = Field(
        None,
        description="해설 (시험 종료 후에만 노출)"
    )

    model_config = {"frozen": True}

    @model_validator(mode='before')
    @classmethod
    def fill_true_false_options(cls, data):
        """O/X 문제에 보기가 없으면 기본 보기를 채운다."""
        if isinstance(data, dict) and data.get("kind") in (QuestionKind.TRUE_FALSE, QuestionKind.TRUE_FALSE.value):
            if not data.get("options"):
                data = {**data, "options": list(TRUE_FALSE_OPTIONS)}
        return data

    @field_validator('options')
    @classmethod
    def validate_options_length(cls, v: List[str]) -> List[str]:
        """
        검증 로직 1: 보기는 최소 2개 이상이어야 한다.
        """
        if len(v) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        return v

    @model_validator(mode='after')
    def validate_answer_key(self) -> 'Question':
        """
        검증 로직 2: O/X 문제는 보기가 정확히 2개, 정답 인덱스는 반드시 보기 범위 안에 있어야 한다.
        """
        if self.kind is QuestionKind.TRUE_FALSE and len(self.options) != 2:
            raise ValueError("O/X 문제는 보기가 정확히 2개여야 합니다.")
        out_of_range = [i for i in self.correct_option_indices if not 0 <= i < len(self.options)]
        if out_of_range:
            raise ValueError(f"정답 인덱스({out_of_range})가 보기 범위(0~{len(self.options) - 1})를 벗어났습니다.")
        return self


class ExamDefinition(BaseModel):
    """카탈로그가 제공하는 시험 정의."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    duration_seconds: int = Field(
        ...,
        gt=0,
        description="제한 시간 (초)"
    )
    total_marks: int = Field(..., ge=0)
    passing_marks: int = Field(
        ...,
        description="합격 기준 점수 (이상이면 합격)"
    )
    questions: List[Question] = Field(..., min_length=1)
    is_active: bool = True
    allow_review: bool = Field(
        True,
        description="종료 후 오답/해설 공개 여부"
    )

    model_config = {"frozen": True}

    @property
    def question_count(self) -> int:
        return len(self.questions)
