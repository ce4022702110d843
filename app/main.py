import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.database import engine, init_models
from app.errors import ServiceError, SyncIncomplete
from app.logging_setup import setup_logging
from app.routers.tasks import router as tasks_router
from app.routers.users import router as users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_file)
    if settings.create_tables:
        await init_models()
    logger.info("[PROCESS %s] Task API ready db=%s", os.getpid(), engine.url.render_as_string(hide_password=True))

    yield

    await engine.dispose()


app = FastAPI(
    lifespan=lifespan,
    title="Task Manager API",
    description="Tasks and Users with a synchronized assignment relationship",
    version="1.0.0",
)

# Enable CORS for the frontend
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex="https?://.*",  # Flexibly allow all origins during development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def envelope(status_code: int, message: str, data=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "data": data})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if isinstance(exc, SyncIncomplete):
        logger.error("%s %s left a partial write: %s", request.method, request.url.path, exc.message)
    return envelope(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.debug("Rejected body for %s %s: %s", request.method, request.url.path, exc.errors())
    return envelope(400, "Invalid request body")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return envelope(exc.status_code, str(exc.detail))


# Global exception handler so unexpected failures still get the envelope
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return envelope(500, "Internal Server Error")


app.include_router(tasks_router, prefix="/api")
app.include_router(users_router, prefix="/api")

@app.get("/")
def root():
    return {"message": "Task Manager API running", "data": None}
