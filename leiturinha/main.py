"""
Leiturinha - Main Application

Personalized children's stories in Brazilian Portuguese: text, optional
illustrations and narration, with reading progress per child.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn
from contextlib import asynccontextmanager
from pathlib import Path
import logging
import sys
import traceback
from datetime import datetime

from leiturinha import __version__
from leiturinha.config import get_settings
from leiturinha.api.routes import router, set_services
from leiturinha.services import build_services
from leiturinha.services.errors import (
    ChapterNotFoundError,
    ChildProfileNotFoundError,
    EntitlementError,
    GenerationFormatError,
    ProviderAuthError,
    ProviderConnectivityError,
    ProviderError,
    ProviderRateLimitError,
    ReadingSessionNotFoundError,
    SelectionError,
    StorageError,
    StoryNotFoundError,
)
from leiturinha.services.gateway import init_gateway
from leiturinha.services.logger import init_logger
from leiturinha.services.provider_router import init_provider_router
from leiturinha.services.rate_limiter import init_concurrency_limiter
from leiturinha.services.storage import InMemoryStorage

# Configure logging to both file and console
log_dir = Path("logs")
log_dir.mkdir(exist_ok=True)
log_file = log_dir / f"leiturinha_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

file_formatter = logging.Formatter(
    '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
console_formatter = logging.Formatter('%(message)s')

# File handler (detailed logs)
file_handler = logging.FileHandler(log_file, encoding='utf-8')
file_handler.setLevel(logging.DEBUG)
file_handler.setFormatter(file_formatter)

# Console handler (user-friendly output)
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(console_formatter)

logging.basicConfig(
    level=logging.DEBUG,
    handlers=[file_handler, console_handler]
)
# SDK request logs are noise at DEBUG
for _noisy in ("httpx", "httpcore", "openai", "anthropic"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)
logger.info(f"📝 Logging to: {log_file}")

GENERIC_ERROR_MESSAGE = "Ocorreu um erro inesperado. Por favor, tente novamente."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifecycle management for the application.

    Initializes services on startup, cleans up on shutdown.
    """
    settings = get_settings()

    print("📚 Initializing Leiturinha...")

    app_logger = init_logger(settings=settings)

    debug_flags = []
    if settings.debug_storage:
        debug_flags.append("Storage")
    if settings.debug_api_calls:
        debug_flags.append("API Calls")
    if debug_flags:
        print(f"🐛 Debug logging enabled: {', '.join(debug_flags)}")
        print(f"📊 Debug logs: {settings.debug_log_dir}/")

    # Provider routing (providers.yaml + TEST_*_MODEL overrides)
    provider_router = init_provider_router()
    print("📋 Provider Router initialized")
    provider_router.log_configuration()

    database_service = None
    if settings.use_sql_database:
        print("📊 Connecting to SQL Server...")
        from leiturinha.services.database import DatabaseService
        database_service = DatabaseService(
            server=settings.sql_server,
            database=settings.sql_database,
            username=settings.sql_username,
            password=settings.sql_password,
            driver=settings.sql_driver,
            logger=app_logger
        )
        database_service.initialize()
        storage = database_service
        print("✅ SQL Server connected")
    else:
        storage = InMemoryStorage()
        print("🧠 Using in-memory storage (data is lost on restart)")

    print("🔍 Validating environment variables...")
    if not settings.openai_api_key:
        print("❌ OPENAI_API_KEY is missing! Stories, illustrations and narration will fail.")
        print("   💡 Set OPENAI_API_KEY in .env file")
    else:
        masked_key = f"{settings.openai_api_key[:8]}...{settings.openai_api_key[-4:]}" if len(settings.openai_api_key) > 12 else "***"
        print(f"✅ OPENAI_API_KEY: {masked_key}")
    if not settings.claude_api_key:
        print("⚠️  CLAUDE_API_KEY is missing! Paid tiers will have no text fallback.")

    gateway = init_gateway(settings, router=provider_router)

    limiter = init_concurrency_limiter(
        max_concurrent=settings.illustration_max_concurrent,
        min_concurrent=settings.illustration_min_concurrent,
    )
    print(f"🚦 Illustration limiter initialized (max {settings.illustration_max_concurrent} concurrent)")

    set_services(build_services(settings, storage, gateway=gateway, limiter=limiter))
    if not settings.backup_images:
        print("⚠️  No backup images configured: failed illustrations will show nothing")

    print(f"📚 Leiturinha ready on port {settings.port}!")
    print(f"📚 API Documentation: http://localhost:{settings.port}/docs")

    yield

    print("👋 Shutting down Leiturinha...")
    limiter.log_stats()
    set_services(None)
    if database_service:
        database_service.close()


app = FastAPI(
    title="Leiturinha",
    description="""
    Histórias infantis personalizadas com IA.

    Features:
    - Story wizard: age group, characters, theme
    - Chapter illustrations with backup images when generation fails
    - Chapter narration (plus and family plans)
    - Reading progress per child
    """,
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
# Configure allowed origins from environment variable (default: "*" for all origins)
_settings = get_settings()
_cors_origins = (
    ["*"] if _settings.cors_allowed_origins == "*"
    else [origin.strip() for origin in _settings.cors_allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, message: str, retryable: bool = False, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "retryable": retryable, **extra},
    )


PROVIDER_STATUS_CODES = [
    (ProviderAuthError, 502),  # Our credentials, not the caller's
    (ProviderRateLimitError, 429),
    (ProviderConnectivityError, 503),
    (GenerationFormatError, 502),
]


def provider_status_code(exc: ProviderError) -> int:
    for error_type, status_code in PROVIDER_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 503


# Validation error handler - log details for debugging
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    error_details = []
    for error in errors:
        input_val = error.get('input', 'N/A')
        if isinstance(input_val, str) and len(input_val) > 100:
            input_val = input_val[:100] + "..."
        error_details.append(f"{error['loc']}: {error['msg']} (input: {input_val})")

    logger.error(f"❌ Validation Error on {request.url.path}: " + " | ".join(error_details))
    return error_response(
        400,
        "Dados inválidos. Verifique as informações enviadas.",
        errors=[{"loc": list(e["loc"]), "msg": e["msg"]} for e in errors],
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(ProviderError)
async def provider_exception_handler(request: Request, exc: ProviderError):
    status_code = provider_status_code(exc)
    logger.warning(f"⚠️ Provider error on {request.url.path}: {type(exc).__name__}: {exc}")
    response = error_response(status_code, exc.user_message, exc.retryable)
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        response.headers["Retry-After"] = str(int(retry_after))
    return response


@app.exception_handler(SelectionError)
async def selection_exception_handler(request: Request, exc: SelectionError):
    logger.info(f"Rejected selection on {request.url.path}: {exc}")
    return error_response(400, exc.user_message)


@app.exception_handler(EntitlementError)
async def entitlement_exception_handler(request: Request, exc: EntitlementError):
    logger.info(f"Entitlement denied on {request.url.path}: {exc}")
    return error_response(403, exc.user_message)


@app.exception_handler(StoryNotFoundError)
@app.exception_handler(ChapterNotFoundError)
@app.exception_handler(ReadingSessionNotFoundError)
@app.exception_handler(ChildProfileNotFoundError)
async def not_found_exception_handler(request: Request, exc: Exception):
    return error_response(404, exc.user_message)


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    logger.error(f"❌ Storage error on {request.url.path}: {exc}")
    return error_response(503, exc.user_message, True)


# Global exception handler - catch unhandled exceptions to prevent crashes
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch all unhandled exceptions to prevent server crashes.
    Logs the error and returns a friendly error message.
    """
    error_id = datetime.now().strftime('%Y%m%d_%H%M%S_%f')

    logger.error(f"❌ UNHANDLED EXCEPTION [{error_id}]")
    logger.error(f"   Path: {request.url.path}")
    logger.error(f"   Method: {request.method}")
    logger.error(f"   Error: {type(exc).__name__}: {exc}")
    logger.error(f"   Traceback:\n{traceback.format_exc()}")

    # Never expose exception details to clients; error_id finds them in the logs
    return error_response(500, GENERIC_ERROR_MESSAGE, error_id=error_id)


app.include_router(router)


@app.get("/")
async def root():
    return {
        "message": "Bem-vindo à Leiturinha!",
        "docs": "/docs",
        "health": "/api/health",
        "version": __version__
    }


def main():
    """Run the application"""
    settings = get_settings()

    uvicorn.run(
        "leiturinha.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
