"""
main.py — CBT 시험 서버 진입점

    python main.py                      # 서버 + 브라우저
    python main.py --no-browser --port 9000
    python main.py --catalog exams.json # 시험 정의 파일 지정
"""

import argparse
import os
import socket
import sys
import threading
import time
import logging
import traceback
import webbrowser
from typing import Optional

from config import BASE_DIR, LOG_FILE, DATA_DIR, DEFAULT_HOST, DEFAULT_PORT

# ── 로깅 설정 ────────────────────────────────────────────────────────────────
try:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
except PermissionError:
    # 로그 파일 점유 시 콘솔 출력만 사용
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


def _pick_port(host: str, preferred: int) -> int:
    """preferred 가 사용 중이면 OS 가 고른 빈 포트."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, preferred))
            return preferred
        except OSError:
            pass
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        port = s.getsockname()[1]
    logger.warning(f"포트 {preferred} 사용 중 — {port} 로 대신 실행")
    return port


def _wait_until_listening(host: str, port: int, timeout: float = 15.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False


def _serve(host: str, port: int, catalog_path: Optional[str]) -> None:
    try:
        import uvicorn
        from api.app import create_app
        from timed_exam.services.catalog import load_catalog_file

        catalog = load_catalog_file(catalog_path) if catalog_path else None
        logger.info(f"Uvicorn 서버 시작 - {host}:{port}")
        uvicorn.run(create_app(catalog=catalog), host=host, port=port, log_level="warning")
    except Exception:
        logger.error(f"서버 오류 발생:\n{traceback.format_exc()}")


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CBT 시험 서버")
    parser.add_argument("--host", default=DEFAULT_HOST, help="바인딩 주소")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="포트 (사용 중이면 빈 포트로 대체)")
    parser.add_argument("--catalog", default=None, help="시험 정의 JSON 파일 (기본: CBT_CATALOG_FILE 또는 내장 샘플)")
    parser.add_argument("--no-browser", action="store_true", help="브라우저를 열지 않고 서버만 실행")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    logger.info("=== CBT Timed Exam Server Started ===")
    os.chdir(BASE_DIR)
    os.makedirs(DATA_DIR, exist_ok=True)

    port = _pick_port(args.host, args.port)
    if args.no_browser:
        _serve(args.host, port, args.catalog)
        return 0

    server_thread = threading.Thread(target=_serve, args=(args.host, port, args.catalog), daemon=True)
    server_thread.start()

    if not _wait_until_listening(args.host, port):
        logger.error("서버 시작 제한 시간을 초과했습니다. 포트를 사용 중인 프로세스를 확인해 보세요.")
        return 1

    url = f"http://{args.host}:{port}"
    logger.info(f"서버 준비 완료. 브라우저를 엽니다: {url}")
    webbrowser.open(url)
    try:
        while server_thread.is_alive():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("사용자에 의해 종료되었습니다.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
