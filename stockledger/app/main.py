from __future__ import annotations

import uuid

from fastapi import FastAPI, Request

from stockledger.app.api.errors import register_error_handlers
from stockledger.app.api.v1.router import router as v1_router
from stockledger.app.config import get_settings
from stockledger.app.db.immutability import register_guards
from stockledger.app.logging_config import LogContext, configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_lines=settings.log_json)
    register_guards()

    app = FastAPI(title="Stock Ledger", version="0.1.0")
    register_error_handlers(app)

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        correlation_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        actor = request.headers.get("X-Actor-Id")
        with LogContext.bind(correlation_id=correlation_id, actor_id=actor):
            response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    app.include_router(v1_router, prefix="/v1")
    return app


app = create_app()
