from __future__ import annotations
import logging
from datetime import timedelta
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .db import init_db
from .deps import get_services
from .routers import attendance, groups, members, sessions
from .core.config import get_settings
from .core.errors import AttendanceError
from .core.face import face_engine
from .core.logging_config import setup_logging
from .core.redis import ping_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
setup_logging(settings.log_level, settings.log_dir)
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()

async def sweep_sessions():
    store = get_services().sessions
    try:
        if settings.auto_close_sessions:
            closed = await store.close_overdue()
            if closed:
                logger.info("auto-closed %d overdue session(s)", len(closed))
        store.purge_completed(timedelta(minutes=settings.session_retention_minutes))
    except AttendanceError as e:
        logger.warning("session sweep failed: %s", e.detail)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.enable_nats_events:
        try:
            await nats_connect()
        except Exception as e:
            logger.warning("NATS unavailable at startup: %s", e)
    if settings.rl_enabled and not await ping_redis():
        logger.warning("Redis unavailable at startup; rate-limited routes will fail until it is reachable")
    if not face_engine.is_ready:
        logger.warning("No face extractor installed; image-based face marking disabled (descriptors still accepted)")

    scheduler.add_job(sweep_sessions, "interval", seconds=settings.session_sweep_interval_sec)
    scheduler.start()

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    get_services().events.close_all()
    if settings.enable_nats_events:
        try:
            await nats_close()
        except Exception as e:
            logger.warning("NATS drain failed: %s", e)

app = FastAPI(title="attendance-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(AttendanceError)
async def attendance_error_handler(request: Request, exc: AttendanceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

app.include_router(sessions.router)
app.include_router(attendance.router)
app.include_router(groups.router)
app.include_router(members.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "attendance-svc", "face_engine_ready": face_engine.is_ready}

Instrumentator().instrument(app).expose(app)
