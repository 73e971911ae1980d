from contextlib import asynccontextmanager
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from telecare.core.config import settings
from telecare.core.exceptions import (
    BaseCustomException,
    create_error_response,
    create_validation_error_response,
    handle_database_error,
)
from telecare.core.logging import setup_logging
from telecare.api.v1.api import api_router
from telecare.infrastructure.database import init_db, close_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    await init_db()
    logger.info(f"{settings.PROJECT_NAME} started")
    yield
    await close_db()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    # Store request ID for correlation
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(BaseCustomException)
async def custom_exception_handler(request: Request, exc: BaseCustomException):
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc, _request_id(request)),
        headers={"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    validation_errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        validation_errors.setdefault(field or "body", []).append(error["msg"])

    return JSONResponse(
        status_code=422,
        content=create_validation_error_response(validation_errors, _request_id(request)),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    error = handle_database_error(exc, f"{request.method} {request.url.path}")
    return JSONResponse(
        status_code=error.status_code,
        content=create_error_response(error, _request_id(request)),
    )


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
def health_check():
    return {"status": "ok"}
