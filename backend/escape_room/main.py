import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .infrastructure.expiry import HttpExpiryScheduler, NullExpiryScheduler
from .routers import reservations, slots
from .utils.request_id import request_id_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    if not settings.expiry_scheduler_url:
        logger.warning("EXPIRY_SCHEDULER_URL not set; holds will not expire automatically")
        app.state.expiry_scheduler = NullExpiryScheduler()
        yield
        return

    async with httpx.AsyncClient(timeout=settings.expiry_scheduler_timeout) as client:
        scheduler = HttpExpiryScheduler(
            client,
            submit_url=settings.expiry_scheduler_url,
            callback_url=settings.expiry_callback_url,
            token_secret=settings.auth_secret,
            token_algorithm=settings.auth_algorithm,
            token_ttl=timedelta(seconds=settings.callback_token_ttl_seconds),
            max_attempts=settings.expiry_max_attempts,
            base_delay=settings.expiry_base_delay_ms / 1000,
        )
        app.state.expiry_scheduler = scheduler
        try:
            yield
        finally:
            await scheduler.drain()


app = FastAPI(title="Escape Room Reservation API", lifespan=lifespan)
app.middleware("http")(request_id_middleware)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Internal server error on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(slots.router)
app.include_router(reservations.router)
app.include_router(reservations.internal_router)
