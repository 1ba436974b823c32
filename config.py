import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")
DATA_DIR = os.getenv("CBT_DATA_DIR", os.path.join(BASE_DIR, "data"))
DRAFT_DIR = os.path.join(DATA_DIR, "drafts")
RESULTS_FILE = os.path.join(DATA_DIR, "results.jsonl")
CATALOG_FILE = os.getenv("CBT_CATALOG_FILE", "")   # 비어 있으면 내장 샘플 시험 사용

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))
SESSION_TTL = int(os.getenv("CBT_SESSION_TTL", "3600"))   # 1시간

# 시험 진행 설정
TIMER_WARNING_SECONDS = 300     # 남은 시간이 이보다 적으면 경고 표시 (5분)

# 결과 저장 재시도
RESULT_SUBMIT_ATTEMPTS = int(os.getenv("CBT_RESULT_SUBMIT_ATTEMPTS", "3"))
RESULT_RETRY_BACKOFF = float(os.getenv("CBT_RESULT_RETRY_BACKOFF", "0.5"))   # 초, 시도마다 2배
