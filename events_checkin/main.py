from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .core.logging import setup_logging
from .db import init_db, close_db
from .deps import get_qr_service
from .routers import events, registrations, qr
from .core.redis import ping_redis, close_redis
from .core.nats import nats_connect, nats_close

setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    get_qr_service()  # resolve the signing secret at startup, not on the first scan
    # infra is optional at boot: quota/rate limiting needs redis per request, NATS is best effort
    try:
        await nats_connect()
    except Exception as e:
        logger.warning("NATS unavailable at startup: %s", e)
    try:
        await ping_redis()
    except Exception as e:
        logger.warning("Redis unavailable at startup: %s", e)
    yield
    try:
        await nats_close()
    except Exception as e:
        logger.warning("NATS drain failed: %s", e)
    await close_redis()
    await close_db()

app = FastAPI(title="events-checkin-svc", lifespan=lifespan)

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

app.include_router(events.router)
app.include_router(registrations.router)
app.include_router(qr.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "events-checkin-svc"}

Instrumentator().instrument(app).expose(app)
