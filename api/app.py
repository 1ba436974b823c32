"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + static 파일 서빙
"""

import asyncio
import contextlib
import logging
import os
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse

from config import CATALOG_FILE, DRAFT_DIR, RESULTS_FILE, STATIC_DIR
from api.routes import router
from api.sample_exams import SAMPLE_EXAMS
import api.session as session
from timed_exam.services.catalog import ExamCatalog, InMemoryExamCatalog, load_catalog_file
from timed_exam.services.controller import AttemptRegistry
from timed_exam.services.draft_store import DraftStore, DraftStoreAdapter, FileDraftStore
from timed_exam.services.result_sink import JsonLinesResultSink, ResultSink
from timed_exam.services.timer import LoopScheduler, Scheduler

logger = logging.getLogger(__name__)

SESSION_COOKIE = "cbt_session"
_CLEANUP_INTERVAL = 300   # 5분


def _default_catalog() -> ExamCatalog:
    if CATALOG_FILE:
        return load_catalog_file(CATALOG_FILE)
    return InMemoryExamCatalog(SAMPLE_EXAMS)


@contextlib.asynccontextmanager
async def _lifespan(app: FastAPI):
    # 만료 세션 주기적 정리 (루프 안에서 실행)
    async def _cleanup_loop():
        while True:
            await asyncio.sleep(_CLEANUP_INTERVAL)
            removed = session.cleanup_expired()
            if removed:
                logger.info(f"만료 세션 {removed}개 정리")

    task = asyncio.create_task(_cleanup_loop())
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


def create_app(
    catalog: Optional[ExamCatalog] = None,
    result_sink: Optional[ResultSink] = None,
    draft_store: Optional[DraftStore] = None,
    scheduler: Optional[Scheduler] = None,
) -> FastAPI:
    app = FastAPI(title="CBT Timed Exam", docs_url=None, redoc_url=None, lifespan=_lifespan)

    app.state.catalog = catalog if catalog is not None else _default_catalog()
    app.state.result_sink = result_sink if result_sink is not None else JsonLinesResultSink(RESULTS_FILE)
    app.state.drafts = DraftStoreAdapter(draft_store if draft_store is not None else FileDraftStore(DRAFT_DIR))
    app.state.scheduler = scheduler if scheduler is not None else LoopScheduler()
    app.state.registry = AttemptRegistry()

    # CORS (모바일 브라우저 등 다양한 출처 허용)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=session.SESSION_TTL,
        )
        return response

    app.include_router(router)

    # static 파일 마운트
    if os.path.isdir(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    # 루트 → index.html
    @app.get("/")
    async def serve_index():
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    return app
