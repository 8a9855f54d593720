import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from spendlog.core.settings import get_settings
from spendlog.routers.ai import router as ai_router
from spendlog.routers.auth import router as auth_router
from spendlog.routers.migrate import router as migrate_router
from spendlog.routers.transactions import router as transactions_router
from spendlog.schemas.common import make_error_response
from spendlog.services.extraction import TransactionExtractor

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.extractor = TransactionExtractor.from_settings(settings)
    if not settings.MIGRATE_TOKEN:
        logger.warning("MIGRATE_TOKEN is not set; POST /api/migrate accepts unauthenticated requests")
    yield


app = FastAPI(
    title="Spendlog API",
    description="Personal finance tracking backend: auth, per-user transactions, and AI text capture",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Cookie"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=make_error_response(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=make_error_response("Invalid payload"),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=make_error_response("Internal server error"),
    )


app.include_router(auth_router)
app.include_router(migrate_router)
app.include_router(ai_router)
app.include_router(transactions_router)


@app.get("/", response_class=PlainTextResponse, tags=["Health Check"])
async def root():
    return "OK"


@app.get("/healthz", tags=["Health Check"])
async def health_check():
    return {"status": "ok"}
