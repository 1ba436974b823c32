"""
api/routes.py — FastAPI 엔드포인트

세션(쿠키)마다 SessionController 하나. 엔드포인트는 컨트롤러 호출 + 도메인 예외 → HTTP 오류 변환만 한다.
"""

import contextlib
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, Field

import api.session as session
from api.session import SessionIdentityProvider
from timed_exam.models.question_model import ExamDefinition
from timed_exam.models.session_state import ExamResult, UserIdentity
from timed_exam.services.controller import (
    IllegalTransitionError,
    Phase,
    SessionClosedError,
    SessionController,
    SessionLockedError,
)
from timed_exam.services.exam_service import get_incorrect_questions
from timed_exam.services.ledger import LedgerError, palette
from timed_exam.services.timer import format_remaining, is_warning

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class LoginBody(BaseModel):
    user_id: str = Field(..., min_length=1)
    display_name: str = ""

class ChooseExamBody(BaseModel):
    exam_id: str

class SaveAnswerBody(BaseModel):
    question_index: int
    option_index: Optional[int] = None   # None 이면 답 지우기

class ToggleReviewBody(BaseModel):
    question_index: int

class NavigateBody(BaseModel):
    index: int = 0


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _controller(request: Request) -> SessionController:
    """세션의 컨트롤러. 없거나 정리된 경우 새로 만든다."""
    sid = request.state.session_id
    controller: Optional[SessionController] = session.get(sid, "controller")
    if controller is None or controller.closed:
        state = request.app.state
        controller = SessionController(
            catalog=state.catalog,
            result_sink=state.result_sink,
            drafts=state.drafts,
            identity=SessionIdentityProvider(sid),
            scheduler=state.scheduler,
            registry=state.registry,
        )
        session.put(sid, "controller", controller)
    return controller


@contextlib.contextmanager
def _domain_errors():
    try:
        yield
    except IllegalTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SessionLockedError:
        raise HTTPException(status_code=400, detail="이미 제출된 시험입니다.")
    except LedgerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SessionClosedError:
        raise HTTPException(status_code=409, detail="종료된 세션입니다. 다시 시작해 주세요.")


def _exam_summary(exam: ExamDefinition) -> dict:
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "duration_seconds": exam.duration_seconds,
        "question_count": exam.question_count,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
    }


def _result_to_dict(result: ExamResult) -> dict:
    d = result.model_dump(mode="json")
    d["passed"] = result.passed
    return d


def _soft_failure(controller: SessionController, default_status: int) -> HTTPException:
    status = 401 if controller.auth_required else default_status
    return HTTPException(status_code=status, detail=controller.message or "요청을 처리할 수 없습니다.")


# ── 로그인 ───────────────────────────────────────────────────────────────────

@router.post("/api/login")
async def login(body: LoginBody, request: Request):
    sid = request.state.session_id
    session.put(sid, "user", UserIdentity(user_id=body.user_id.strip(), display_name=body.display_name))
    controller = _controller(request)
    # 로그인 전에 고른 시험이 있으면 브리핑으로 이어서 이동
    resumed_choice = controller.phase is Phase.SELECT and controller.resume_pending_choice()
    return {"ok": True, "user_id": body.user_id.strip(), "phase": controller.phase.value,
            "resumed_choice": resumed_choice}


@router.post("/api/logout")
async def logout(request: Request):
    session.put(request.state.session_id, "user", None)
    return {"ok": True}


# ── Select / Brief ───────────────────────────────────────────────────────────

@router.get("/api/exams")
async def list_exams(request: Request):
    controller = _controller(request)
    return [_exam_summary(e) for e in controller.list_exams()]


@router.post("/api/choose-exam")
async def choose_exam(body: ChooseExamBody, request: Request):
    controller = _controller(request)
    with _domain_errors():
        ok = controller.choose_exam(body.exam_id)
    if not ok:
        raise _soft_failure(controller, 404)
    return {"ok": True, "phase": controller.phase.value, "exam": _exam_summary(controller.exam)}


@router.get("/api/briefing")
async def briefing(request: Request):
    controller = _controller(request)
    if controller.phase is not Phase.BRIEF:
        raise HTTPException(status_code=409, detail="선택된 시험이 없습니다.")
    return _exam_summary(controller.exam)


@router.post("/api/back")
async def back(request: Request):
    controller = _controller(request)
    with _domain_errors():
        controller.back()
    return {"ok": True, "phase": controller.phase.value}


# ── Run ──────────────────────────────────────────────────────────────────────

@router.post("/api/begin")
async def begin(request: Request):
    controller = _controller(request)
    with _domain_errors():
        ok = controller.begin()
    if not ok:
        raise _soft_failure(controller, 409)
    state = controller.state
    return {
        "ok": True,
        "resumed": controller.view.resumed,
        "total": controller.exam.question_count,
        "current_index": state.current_index,
        "remaining_seconds": state.remaining_seconds,
    }


@router.get("/api/exam-state")
async def get_exam_state(request: Request):
    controller = _controller(request)
    d = {
        "phase": controller.phase.value,
        "message": controller.message,
        "auth_required": controller.auth_required,
    }
    state = controller.state
    if state is None:
        return d

    total = controller.exam.question_count
    d.update({
        "exam_id": state.exam_id,
        "title": controller.exam.title,
        "total": total,
        "current_index": state.current_index,
        "answers": {str(k): v for k, v in state.answers.items()},
        "marked_for_review": sorted(state.marked_for_review),
        "answered_count": len(state.answers),
        "palette": [p.value for p in palette(state, total)],
        "remaining_seconds": state.remaining_seconds,
        "remaining_display": format_remaining(state.remaining_seconds),
        "warning": is_warning(state.remaining_seconds),
        "violation_count": state.violation_count,
        "submitting": controller.submitting,
        "submission_failed": controller.submission_failed,
    })
    return d


@router.get("/api/question/{index}")
async def get_question(index: int, request: Request):
    controller = _controller(request)
    state = controller.state
    if state is None:
        raise HTTPException(status_code=409, detail="진행 중인 시험이 없습니다.")
    questions = controller.exam.questions
    if not (0 <= index < len(questions)):
        raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")

    q = questions[index]
    # 정답/해설은 시험 중에 내보내지 않는다
    return {
        "id": q.id,
        "kind": q.kind.value,
        "question_text": q.question_text,
        "options": q.options,
        "marks": q.marks,
        "negative_marks": q.negative_marks,
        "saved_answer": state.answers.get(index),
        "marked": index in state.marked_for_review,
        "index": index,
        "total": len(questions),
    }


@router.post("/api/save-answer")
async def save_answer(body: SaveAnswerBody, request: Request):
    controller = _controller(request)
    with _domain_errors():
        if body.option_index is None:
            controller.clear_answer(body.question_index)
        else:
            controller.select_answer(body.question_index, body.option_index)
    return {"ok": True, "answered_count": len(controller.state.answers)}


@router.post("/api/toggle-review")
async def toggle_review(body: ToggleReviewBody, request: Request):
    controller = _controller(request)
    with _domain_errors():
        marked = controller.toggle_review(body.question_index)
    return {"ok": True, "marked": marked}


@router.post("/api/navigate")
async def navigate(body: NavigateBody, request: Request):
    controller = _controller(request)
    with _domain_errors():
        controller.navigate(body.index)
    return {"index": controller.state.current_index, "ok": True}


@router.post("/api/focus-lost")
async def focus_lost(request: Request):
    controller = _controller(request)
    controller.focus_signal.emit()
    state = controller.state
    return {"ok": True, "violation_count": state.violation_count if state else None}


@router.post("/api/submit-exam")
async def submit_exam(request: Request, response: Response):
    controller = _controller(request)
    with _domain_errors():
        controller.submit()
    if controller.result is None:
        if controller.submitting:
            # 재시도 대기 중. 완료 여부는 /api/exam-state 로 확인
            response.status_code = 202
            return {"ok": False, "submitting": True}
        if controller.submission_failed:
            raise HTTPException(status_code=503, detail=controller.message)
        raise HTTPException(status_code=409, detail="제출할 수 없는 상태입니다.")
    return {"ok": True, **_result_to_dict(controller.result)}


# ── Finish ───────────────────────────────────────────────────────────────────

@router.get("/api/results")
async def get_results(request: Request):
    controller = _controller(request)
    result = controller.result
    if result is None:
        raise HTTPException(status_code=404, detail="결과 정보가 없습니다.")

    exam = controller.exam
    d = _result_to_dict(result)
    d["title"] = exam.title
    d["passing_marks"] = exam.passing_marks

    review = []
    if exam.allow_review:
        for idx, q in get_incorrect_questions(exam.questions, result.answers):
            review.append({
                "index": idx,
                "question_text": q.question_text,
                "options": q.options,
                "user_answer": result.answers[idx],
                "correct_option_indices": sorted(q.correct_option_indices),
                "explanation": q.explanation,
            })
    d["incorrect_questions"] = review
    return d


@router.post("/api/restart")
async def restart(request: Request):
    controller = _controller(request)
    with _domain_errors():
        controller.restart()
    return {"ok": True, "phase": controller.phase.value}


@router.get("/api/history")
async def history(request: Request):
    user: Optional[UserIdentity] = session.get(request.state.session_id, "user")
    if user is None:
        raise HTTPException(status_code=401, detail="로그인이 필요합니다.")
    results = request.app.state.result_sink.results_for_user(user.user_id)
    return [_result_to_dict(r) for r in sorted(results, key=lambda r: r.submitted_at, reverse=True)]


@router.post("/api/reset")
async def reset_session(request: Request):
    session.reset(request.state.session_id)
    return {"ok": True}
