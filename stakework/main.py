"""Stakework: staked task marketplace."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from slowapi.middleware import SlowAPIMiddleware

from stakework.api.router import api_router
from stakework.config import settings
from stakework.content import render_response
from stakework.database import close_db, init_db
from stakework.parameters import ParameterStore
from stakework.rate_limit import limiter
from stakework.services.rails import rail_from_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("stakework")


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_url = settings.database_url
    if not db_url.startswith("sqlite"):
        db_url = f"sqlite+aiosqlite:///{db_url}"
    await init_db(db_url)
    safe_url = re.sub(r"://[^:]+:[^@]+@", "://***:***@", db_url)
    logger.info("Database connected: %s", safe_url)

    app.state.parameters = ParameterStore.from_settings(settings)
    app.state.rail = rail_from_settings(settings)
    logger.info("Payment rail: %s", type(app.state.rail).__name__)

    yield

    await close_db()
    logger.info("Database closed")


app = FastAPI(
    title="Stakework",
    description="Task marketplace where creators and members lock stakes",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.include_router(api_router)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return render_response(
        request,
        {"error": exc.detail},
        status_code=exc.status_code,
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


def main():
    import uvicorn

    uvicorn.run(
        "stakework.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
