import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Load env from the working directory .env outside of test runs
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from orbit.api import appreciations, health, nudges, realtime, streaks, summary, tasks
from orbit.core.config import settings, validate_config
from orbit.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from orbit.core.logging import configure_logging
from orbit.core.middleware.request_id import RequestIdMiddleware
from orbit.realtime.hub import hub
from orbit.workers.scheduler import start_scheduler, stop_scheduler

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("orbit")
    logger.info("Starting Orbit backend...")
    await hub.start()
    app.state.scheduler = start_scheduler()
    try:
        yield
    finally:
        stop_scheduler(app.state.scheduler)
        await hub.stop()
        logger.info("Stopping Orbit backend...")


app = FastAPI(title="Orbit - Backend", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Dev frontend origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tasks.router, tags=["tasks"])
app.include_router(streaks.router, tags=["streaks"])
app.include_router(appreciations.router, tags=["appreciations"])
app.include_router(nudges.router, tags=["nudges"])
app.include_router(summary.router, tags=["orbit-summary"])
app.include_router(realtime.router, tags=["realtime"])
app.include_router(health.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("orbit.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
