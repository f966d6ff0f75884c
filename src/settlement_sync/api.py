"""FastAPI application exposing the sync and reconciliation engine to schedulers."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .auth import limiter
from .database import init_db, close_db
from .reconciliation.api import router as reconciliation_router, sync_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Settlement Sync API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(sync_router)
app.include_router(reconciliation_router)


@app.get("/health")
async def health():
    return {"status": "healthy"}
