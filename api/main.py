"""
FastAPI Application — Ingress for the SMS dispatch pipeline.

Provides:
- SMS submission, lookup and search
- Blacklist administration
- Ledger cache maintenance
- Health and queue diagnostics

Phone normalization and message length limits are enforced here; the
core service only ever sees E.164 numbers.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.logging_config import configure_logging
from config.settings import get_settings
from core.bootstrap import Pipeline, build_pipeline
from core.errors import ErrorCodes, NotificationError
from core.service import SmsService
from database.session import close_db, init_db
from models.schemas import SearchCriteria
from utils.phone import normalize_admin_number, normalize_phone_number

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class SendSmsRequest(BaseModel):
    phone_number: str
    message: str = Field(..., min_length=1)
    request_id: Optional[str] = None


class BlacklistRequest(BaseModel):
    phone_numbers: list[str] = Field(..., min_length=1)


HTTP_STATUS_BY_CODE = {
    ErrorCodes.INVALID_REQUEST: 400,
    ErrorCodes.INVALID_PHONE_NUMBER: 400,
    ErrorCodes.PHONE_NUMBER_BLACKLISTED: 422,
    ErrorCodes.BLACKLIST_ADD_FAILED: 422,
    ErrorCodes.BLACKLIST_REMOVE_FAILED: 422,
    ErrorCodes.BLACKLIST_RETRIEVE_FAILED: 422,
    ErrorCodes.REQUEST_NOT_FOUND: 404,
    ErrorCodes.INVALID_STATUS_TRANSITION: 409,
    ErrorCodes.RATE_LIMIT_EXCEEDED: 429,
    ErrorCodes.SMS_SEND_FAILED: 502,
    ErrorCodes.PROVIDER_ERROR: 502,
}


def _error_body(code: str, message: str) -> dict[str, Any]:
    return {"error": {"code": code, "message": message}}


def get_service(request: Request) -> SmsService:
    return request.app.state.pipeline.service


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(pipeline: Optional[Pipeline] = None, start_consumer: bool = True) -> FastAPI:
    settings = pipeline.settings if pipeline else get_settings()
    configure_logging(debug=settings.debug)
    pipeline = pipeline or build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if pipeline.uses_sql:
            await init_db()
        await pipeline.queue.connect()
        if start_consumer:
            await pipeline.consumer.start_background()

        logger.info("sms_dispatch_started",
                    app=settings.app_name,
                    queue_backend=type(pipeline.queue).__name__,
                    workers=settings.queue.workers)
        yield

        await pipeline.close()
        if pipeline.uses_sql:
            await close_db()
        logger.info("sms_dispatch_stopped")

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Asynchronous SMS dispatch with blacklist gating and search",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI):

    @app.exception_handler(NotificationError)
    async def notification_error_handler(request: Request, exc: NotificationError):
        status = HTTP_STATUS_BY_CODE.get(exc.code, 500)
        log = logger.warning if status < 500 else logger.error
        log("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=status, content=_error_body(exc.code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(status_code=400,
                            content=_error_body(ErrorCodes.INVALID_REQUEST, details))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("request_unhandled_error", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(status_code=500,
                            content=_error_body(ErrorCodes.INTERNAL_SERVER_ERROR,
                                                "An unexpected error occurred"))


def _register_routes(app: FastAPI):

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health(pipeline: Pipeline = Depends(get_pipeline)):
        settings = pipeline.settings
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "queue_backend": type(pipeline.queue).__name__,
            "request_queue_depth": await pipeline.queue.queue_length(settings.queue.request_topic),
            "blacklist_gate": dict(pipeline.gate.stats),
            "search_projector": dict(pipeline.projector.stats),
        }

    # ══════════════════════════════════════════════════════════
    #  SMS
    # ══════════════════════════════════════════════════════════

    @app.post("/v1/sms/send")
    async def send_sms(req: SendSmsRequest, request: Request,
                       service: SmsService = Depends(get_service)):
        sms = request.app.state.pipeline.settings.sms
        phone = normalize_phone_number(req.phone_number, sms.default_country_code)
        result = await service.submit(phone, req.message, req.request_id)
        return result.model_dump(mode="json")

    @app.get("/v1/sms/search")
    async def search_sms(
        request: Request,
        phone_number: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        text: Optional[str] = None,
        page: int = Query(0, ge=0),
        size: int = Query(20, ge=1, le=100),
        service: SmsService = Depends(get_service),
    ):
        if phone_number:
            sms = request.app.state.pipeline.settings.sms
            phone_number = normalize_phone_number(phone_number, sms.default_country_code)
        criteria = SearchCriteria(text=text, phone_number=phone_number,
                                  start=start_time, end=end_time)
        results = await service.search(criteria, page, size)
        return {
            "data": [r.model_dump(mode="json") for r in results.items],
            "page_info": results.page_info(),
        }

    @app.get("/v1/sms/{ledger_id}")
    async def get_sms(ledger_id: int, service: SmsService = Depends(get_service)):
        found = await service.lookup(ledger_id)
        return found.model_dump(mode="json")

    @app.delete("/v1/sms/cache")
    async def clear_all_sms_caches(service: SmsService = Depends(get_service)):
        removed = await service.clear_all_caches()
        return {"cleared": removed}

    @app.delete("/v1/sms/{ledger_id}/cache")
    async def clear_sms_cache(ledger_id: int, service: SmsService = Depends(get_service)):
        cleared = await service.clear_cache(ledger_id)
        return {"ledger_id": ledger_id, "cleared": cleared}

    # ══════════════════════════════════════════════════════════
    #  BLACKLIST
    # ══════════════════════════════════════════════════════════

    def _admin_numbers(req: BlacklistRequest, request: Request) -> list[str]:
        code = request.app.state.pipeline.settings.sms.default_country_code
        return [normalize_admin_number(p, code) for p in req.phone_numbers]

    @app.post("/v1/blacklist")
    async def add_to_blacklist(req: BlacklistRequest, request: Request,
                               service: SmsService = Depends(get_service)):
        numbers = _admin_numbers(req, request)
        added = await service.add_to_blacklist(numbers)
        return {"data": "Successfully blacklisted", "added": added}

    @app.delete("/v1/blacklist")
    async def remove_from_blacklist(req: BlacklistRequest, request: Request,
                                    service: SmsService = Depends(get_service)):
        numbers = _admin_numbers(req, request)
        removed = await service.remove_from_blacklist(numbers)
        return {"data": "Successfully whitelisted", "removed": removed}

    @app.get("/v1/blacklist")
    async def get_blacklist(service: SmsService = Depends(get_service)):
        return {"data": await service.get_blacklist()}


app = create_app()
