import logging
import os

from fastapi import FastAPI

from shared.redis import close_redis

from . import config
from .engine import build_engine
from .middleware import RequestLoggingMiddleware
from .routes import router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL") or "INFO",
    format="%(asctime)s %(levelname)s [booking-sync] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Booking Sync Service")
app.add_middleware(RequestLoggingMiddleware)
app.include_router(router)

@app.get("/health")
async def health():
    engine = getattr(app.state, "engine", None)
    return {
        "status": "ok",
        "service": "booking-sync-service",
        "online": engine.connectivity.online if engine else None,
        "draining": engine.synchronizer.draining if engine else None,
    }

@app.on_event("startup")
async def startup():
    engine = await build_engine()
    await engine.start(
        user_id=os.getenv("ACTIVE_USER_ID"),
        probe_interval=config.CONNECTIVITY_PROBE_SECONDS,
    )
    app.state.engine = engine
    logger.info("booking engine started")

@app.on_event("shutdown")
async def shutdown():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        try:
            await engine.stop()
        except Exception:
            logger.exception("booking engine did not stop cleanly")
    await close_redis()
