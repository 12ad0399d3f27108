import asyncio
import os

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sheetbot.config import settings
from sheetbot.database import init_db
from sheetbot.dependencies import get_broadcast_service, get_conversation_log
from sheetbot.logging_config import get_logger, setup_logging
from sheetbot.routers import admin, webhook
from sheetbot.services.errors import ServiceError

setup_logging(settings.log_level, debug=settings.debug)
logger = get_logger("main")

app = FastAPI(
    title="Sheetbot API",
    description="WhatsApp assistant driven by a spreadsheet and an LLM",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": "error", "detail": jsonable_encoder(exc.errors())},
    )


housekeeping_logger = get_logger("housekeeping")
_housekeeping_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _are_workers_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("BACKGROUND_WORKERS_ENABLED"), default=True)


async def _housekeeping_loop() -> None:
    conversation_log = get_conversation_log()
    while True:
        try:
            await asyncio.sleep(max(settings.housekeeping_interval_hours, 0.01) * 3600)
            deleted = await conversation_log.cleanup_old(settings.history_max_age_days)
            housekeeping_logger.info(
                "Old conversation history removed",
                extra={"context": {"deleted": deleted, "max_age_days": settings.history_max_age_days}},
            )
        except asyncio.CancelledError:
            break
        except Exception as exc:
            housekeeping_logger.error(
                "Housekeeping loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def startup() -> None:
    global _housekeeping_task
    init_db()

    try:
        stats = await get_conversation_log().get_stats()
        logger.info("Conversation log ready", extra={"context": stats})
    except ServiceError as e:
        logger.warning(f"Conversation log stats unavailable: {e}")

    if not _are_workers_enabled():
        return

    get_broadcast_service().start()
    if _housekeeping_task is None or _housekeeping_task.done():
        _housekeeping_task = asyncio.create_task(_housekeeping_loop())
        housekeeping_logger.info("Housekeeping worker started")


@app.on_event("shutdown")
async def shutdown() -> None:
    global _housekeeping_task
    await get_broadcast_service().stop()
    if _housekeeping_task is None:
        return
    _housekeeping_task.cancel()
    try:
        await _housekeeping_task
    except asyncio.CancelledError:
        pass
    _housekeeping_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}
