import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.admin import router as admin_router
from .api.exceptions import register_exception_handlers
from .api.routes import (
    deposit_router,
    referral_router,
    verification_router,
    wallet_router,
    withdrawal_router,
)
from .api.webhooks import payments_router, webhook_router
from .core.config import get_settings
from .core.db import init_db

settings = get_settings()
logging.basicConfig(level=settings.log_level)

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield

app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.include_router(wallet_router)
app.include_router(deposit_router)
app.include_router(referral_router)
app.include_router(verification_router)
app.include_router(withdrawal_router)
app.include_router(payments_router)
app.include_router(webhook_router)
app.include_router(admin_router)
register_exception_handlers(app)

@app.get("/health")
def read_health() -> dict[str, str]:
    return {"status": "ok"}
