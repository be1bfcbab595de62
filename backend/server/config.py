"""Global configuration: paths, env vars.

DEPLOYMENT:
  Copy .env.example → .env and fill in the values.
  To switch servers, only the .env file needs to change, no code edits required.
"""

import os
from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))  # backend/
PROJECT_DIR = os.path.dirname(BASE_DIR)  # project root

# Load .env from project root (overrides any system env vars with same name)
load_dotenv(os.path.join(PROJECT_DIR, ".env"), override=True)

# ─── Paths ───────────────────────────────────────────────────
DEFAULT_DATA_DIR = os.path.join(BASE_DIR, "storage")
DB_FILENAME = "studymap.json"


def data_dir() -> str:
    """Directory holding the course database. Read per call so tests can repoint it."""
    return os.environ.get("STUDYMAP_DATA_DIR") or DEFAULT_DATA_DIR


# ─── Environment ─────────────────────────────────────────────
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT == "production"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ─── Server ──────────────────────────────────────────────────
# Change PORT in .env to run on a different port.
PORT = int(os.environ.get("PORT", 8000))

# ─── CORS ────────────────────────────────────────────────────
# Dev:  ALLOWED_ORIGINS=*   (allows any origin)
# Prod: ALLOWED_ORIGINS=https://yourdomain.com,https://www.yourdomain.com
_raw_origins = os.environ.get("ALLOWED_ORIGINS", "*")
ALLOWED_ORIGINS = ["*"] if _raw_origins.strip() == "*" else [
    o.strip() for o in _raw_origins.split(",") if o.strip()
]

# ─── Claude ──────────────────────────────────────────────────
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
CLAUDE_MODEL = os.environ.get("CLAUDE_MODEL", "claude-haiku-4-5")
CLAUDE_TIMEOUT_SECONDS = float(os.environ.get("CLAUDE_TIMEOUT_SECONDS", 90))
CLAUDE_HEALTH_TTL_SECONDS = float(os.environ.get("CLAUDE_HEALTH_TTL_SECONDS", 300))

# Output token ceilings. Hitting one sets stop_reason="max_tokens" and the
# response goes through truncation repair.
STUDY_MAP_MAX_TOKENS = int(os.environ.get("STUDY_MAP_MAX_TOKENS", 16384))
QUIZ_MAX_TOKENS = int(os.environ.get("QUIZ_MAX_TOKENS", 4096))
RESOURCE_MAX_TOKENS = int(os.environ.get("RESOURCE_MAX_TOKENS", 4096))
CHAT_MAX_TOKENS = int(os.environ.get("CHAT_MAX_TOKENS", 2048))

# Characters of extracted syllabus text sent when no PDF can be attached.
SYLLABUS_TEXT_LIMIT = int(os.environ.get("SYLLABUS_TEXT_LIMIT", 15000))
