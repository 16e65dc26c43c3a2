"""Payment reconciliation FastAPI application.

Receives payment authority notifications, reconciles them into payment records
and answers "has this item been paid for?".

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reconciliation.api import payment_router
from reconciliation.authority import get_authority
from reconciliation.authority.mercadopago_adapter import MercadoPagoAuthority
from reconciliation.config import get_settings
from reconciliation.store import SqlAlchemyPaymentStore, get_store
from reconciliation.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()

    store = get_store()
    if isinstance(store, SqlAlchemyPaymentStore):
        await store.create_schema()

    authority = get_authority()
    logger.info(
        "Reconciliation service started",
        environment=get_settings().ENVIRONMENT,
        authority=type(authority).__name__,
        store=type(store).__name__,
    )

    yield

    if isinstance(authority, MercadoPagoAuthority):
        await authority.aclose()
    if isinstance(store, SqlAlchemyPaymentStore):
        await store.dispose()
    logger.info("Reconciliation service stopped")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
settings = get_settings()

app = FastAPI(
    title=settings.APP_NAME,
    description="Payment notification reconciliation and payment status",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(payment_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "authority": type(get_authority()).__name__,
            "store": type(get_store()).__name__,
        }
    )
