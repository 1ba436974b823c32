"""
api/sample_exams.py — 카탈로그 파일이 없을 때 사용하는 내장 샘플 시험
"""

from timed_exam.models.question_model import ExamDefinition, Question, QuestionKind

SAMPLE_EXAMS: list[ExamDefinition] = [
    ExamDefinition(
        id="trade-basics",
        title="무역 실무 모의고사",
        description="인코텀즈, 결제, 운송 기초",
        duration_seconds=15 * 60,
        total_marks=30,
        passing_marks=18,
        questions=[
            Question(
                id="tb-1",
                question_text="인코텀즈 2020에서 매도인의 비용과 위험 부담이 가장 큰 조건은?",
                options=["EXW", "FCA", "CIF", "DDP"],
                correct_option_indices={3},
                marks=5,
                negative_marks=1,
                explanation="DDP는 수입 통관과 관세까지 매도인이 부담한다.",
            ),
            Question(
                id="tb-2",
                question_text="D/P(Documents against Payment) 방식에서 서류가 인도되는 시점은?",
                options=["환어음 인수 시", "대금 지급 시", "선적 시", "신용장 개설 시"],
                correct_option_indices={1},
                marks=5,
                negative_marks=1,
                explanation="D/P는 수입상이 대금을 지급해야 선적서류를 받는다.",
            ),
            Question(
                id="tb-3",
                question_text="선하증권(B/L)은 유통 가능한 권리증권이다.",
                kind=QuestionKind.TRUE_FALSE,
                correct_option_indices={0},
                marks=5,
                negative_marks=1,
            ),
            Question(
                id="tb-4",
                question_text="FCL 화물에 대한 설명으로 옳은 것은?",
                options=["여러 화주의 혼재 화물", "한 화주가 컨테이너 전체 사용", "항공 전용 용어", "소량 화물 전용"],
                correct_option_indices={1},
                marks=5,
                negative_marks=1,
            ),
            Question(
                id="tb-5",
                question_text="항공화물운송장(AWB)은 유통증권이다.",
                kind=QuestionKind.TRUE_FALSE,
                correct_option_indices={1},
                marks=5,
                negative_marks=1,
                explanation="AWB는 비유통성 화물수취증이다.",
            ),
            Question(
                id="tb-6",
                question_text="포페이팅(Forfaiting)의 특징으로 옳은 것은?",
                options=["소구권 있음", "국내 거래 전용", "무소구 조건 매입", "90일 이내 단기 금융"],
                correct_option_indices={2},
                marks=5,
                negative_marks=1,
            ),
        ],
    ),
    ExamDefinition(
        id="python-quiz",
        title="Python 기초 퀴즈",
        duration_seconds=5 * 60,
        total_marks=10,
        passing_marks=6,
        allow_review=False,
        questions=[
            Question(
                id="py-1",
                question_text="len([1, 2, 3]) 의 결과는?",
                options=["2", "3", "4"],
                correct_option_indices={1},
                marks=2,
            ),
            Question(
                id="py-2",
                question_text="튜플(tuple)은 변경 불가능(immutable)하다.",
                kind=QuestionKind.TRUE_FALSE,
                correct_option_indices={0},
                marks=2,
            ),
            Question(
                id="py-3",
                question_text="딕셔너리에서 키가 없을 때 기본값을 돌려주는 메서드는?",
                options=["get", "pop", "keys", "items"],
                correct_option_indices={0},
                marks=2,
            ),
            Question(
                id="py-4",
                question_text="range(3) 이 만드는 마지막 값은?",
                options=["2", "3", "0"],
                correct_option_indices={0},
                marks=2,
            ),
            Question(
                id="py-5",
                question_text="'abc'.upper() 의 결과는?",
                options=["'ABC'", "'Abc'", "'abc'"],
                correct_option_indices={0},
                marks=2,
            ),
        ],
    ),
    ExamDefinition(
        id="archived-2023",
        title="2023 정기 시험 (마감)",
        duration_seconds=60 * 60,
        total_marks=5,
        passing_marks=3,
        is_active=False,
        questions=[
            Question(
                id="ar-1",
                question_text="마감된 시험입니다.",
                kind=QuestionKind.TRUE_FALSE,
                correct_option_indices={0},
                marks=5,
            ),
        ],
    ),
]
