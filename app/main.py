"""
Main FastAPI application for the carrier unlock service.
Serves network detection, identification, payment, article access, subscriber, admin and metrics routes.
"""
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.core.logging import configure_logging
from app.api.routes import admin, articles, health, identify, me, mock_provider, network, payment
from app.utils.metrics import router as metrics_router


configure_logging()
logger = logging.getLogger("app.access")

app = FastAPI(
    title="Carrier Unlock API",
    description="Carrier-billed single-article unlocks",
    version="1.0.0",
)

register_exception_handlers(app)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = [settings.public_base_url]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def access_log(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid.uuid4().hex
    start = time.time()
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "request",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 1),
        },
    )
    return response


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(network.router)
app.include_router(identify.router)
app.include_router(payment.router)
app.include_router(mock_provider.router)
app.include_router(articles.router)
app.include_router(me.router)
app.include_router(admin.router)
app.include_router(metrics_router)
