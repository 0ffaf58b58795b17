import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from beacon.core.config import settings
from beacon.core.database import engine
from beacon.core.logging_buffer import logging_buffer
from beacon.core.logging_setup import setup_logging
from beacon.api.v1.router import api_router
from beacon.services.schema_bootstrap import ensure_admin_account, ensure_base_schema_ready

setup_logging()
logger = logging.getLogger(__name__)

_LOGS_PATH = f"{settings.API_PREFIX}/admin/logs"


def _mask_key(authorization: str) -> str:
    token = authorization.removeprefix("Bearer ").strip()
    return f"{token[:8]}...{token[-4:]}" if len(token) > 12 else "***"


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        if not await ensure_base_schema_ready():
            logger.warning("Schema bootstrap incomplete, continuing with existing tables")
    except Exception as e:
        logger.warning(f"Table creation skipped: {e}")

    try:
        await ensure_admin_account()
    except Exception as e:
        logger.warning(f"Admin creation skipped: {e}")

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    if not logging_buffer.enabled:
        return await call_next(request)

    start_time = time.time()
    method = request.method
    path = request.url.path
    client_ip = request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")

    # polling the journal must not fill the journal
    if path.startswith(_LOGS_PATH):
        return await call_next(request)

    if path.startswith(settings.API_PREFIX + "/"):
        body_bytes = await request.body()
        limit = settings.REQUEST_LOG_MAX_BODY_BYTES
        body_preview = body_bytes[:limit].decode("utf-8", errors="replace") if body_bytes else ""

        logging_buffer.add("request", f"{method} {path}", {
            "ip": client_ip,
            "api_key": _mask_key(request.headers.get("Authorization", "")),
            "body": body_preview,
        })

    try:
        response = await call_next(request)
        duration = round((time.time() - start_time) * 1000, 1)

        if path.startswith(settings.API_PREFIX + "/"):
            logging_buffer.add("processing", f"Response {response.status_code} in {duration}ms: {method} {path}")

        return response
    except Exception as e:
        duration = round((time.time() - start_time) * 1000, 1)
        logger.exception("Exception in %s %s (%sms): %s", method, path, duration, e)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.VERSION}
