import logging
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.auth import unconfigured_webhook_secrets
from src.config import settings
from src.observability import configure_logging, log_event
from src.routers import (
    calls,
    health,
    internal_metrics,
    usage,
    webhooks,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    for setting_name in unconfigured_webhook_secrets(settings):
        log_event(
            "webhook_signature_verification_disabled",
            level=logging.WARNING,
            setting=setting_name.upper(),
        )
    yield


app = FastAPI(title="Lead Response Engine", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

app.include_router(webhooks.router)
app.include_router(calls.router)
app.include_router(usage.router)
app.include_router(internal_metrics.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "lead-response-engine"}
