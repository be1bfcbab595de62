"""Server: FastAPI app creation, middleware, startup."""

from dotenv import load_dotenv
load_dotenv(override=True)

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import anthropic
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from server.config import ALLOWED_ORIGINS, IS_PRODUCTION, LOG_LEVEL, PORT
from server.database import init_db

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from brain.errors import BrainError
from brain.routes import router as brain_router
from courses.routes import router as courses_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    from brain.study_brain import StudyBrain

    # Startup
    init_db()
    if getattr(app.state, "brain", None) is None:
        app.state.brain = StudyBrain.from_config()
    logger.info("StudyMap API started (claude configured: %s)", app.state.brain.configured)
    yield
    # Shutdown
    logger.info("StudyMap API shutting down")


app = FastAPI(
    title="StudyMap API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if IS_PRODUCTION else "/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=ALLOWED_ORIGINS != ["*"],
)


# ─── Errors ──────────────────────────────────────────────────
@app.exception_handler(BrainError)
async def brain_error_handler(request: Request, exc: BrainError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(anthropic.APIError)
async def claude_error_handler(request: Request, exc: anthropic.APIError):
    logger.error("%s %s: Claude API error: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"error": "claude_error", "message": str(exc)})


# ─── API routes ──────────────────────────────────────────────
app.include_router(brain_router, prefix="/api", tags=["brain"])
app.include_router(courses_router, prefix="/api", tags=["courses"])


@app.get("/health")
def health_check(request: Request):
    brain = request.app.state.brain
    readiness = brain.check_availability()
    checked_at = datetime.fromtimestamp(readiness["checkedAt"], tz=timezone.utc)
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "claudeEnabled": readiness["available"],
        "claudeConfigured": brain.configured,
        "claudeLastChecked": checked_at.isoformat().replace("+00:00", "Z"),
        "claudeError": readiness.get("error"),
    }


def run():
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=PORT)
