"""
services/catalog.py

시험 카탈로그 (읽기 전용).
"""

import json
import logging
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import ValidationError

from timed_exam.models.question_model import ExamDefinition

logger = logging.getLogger(__name__)


class ExamCatalog(Protocol):
    def list_active_exams(self) -> List[ExamDefinition]: ...

    def get_exam_by_id(self, exam_id: str) -> Optional[ExamDefinition]: ...


class InMemoryExamCatalog:
    def __init__(self, exams: Iterable[ExamDefinition] = ()):
        self._exams: Dict[str, ExamDefinition] = {}
        for exam in exams:
            self._exams[exam.id] = exam

    def list_active_exams(self) -> List[ExamDefinition]:
        return [e for e in self._exams.values() if e.is_active]

    def get_exam_by_id(self, exam_id: str) -> Optional[ExamDefinition]:
        return self._exams.get(exam_id)


def load_catalog_file(path: str) -> InMemoryExamCatalog:
    """
    JSON 파일(시험 정의 리스트)에서 카탈로그를 읽는다.
    검증에 실패한 항목은 건너뛰고 나머지 시험은 그대로 사용.
    """
    with open(path, "r", encoding="utf-8") as f:
        items = json.load(f)
    if not isinstance(items, list):
        raise ValueError(f"카탈로그 파일은 시험 리스트여야 합니다: {path}")

    exams: List[ExamDefinition] = []
    for idx, item in enumerate(items):
        try:
            exams.append(ExamDefinition.model_validate(item))
        except ValidationError as e:
            logger.warning(f"item[{idx}]: ExamDefinition 생성 실패 — {e}")
    logger.info(f"카탈로그 로드: {len(exams)}/{len(items)}개 시험 ({path})")
    return InMemoryExamCatalog(exams)
