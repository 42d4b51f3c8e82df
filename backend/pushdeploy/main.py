import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pushdeploy.api import auth, repos, scripts, webhook
from pushdeploy.config import settings
from pushdeploy.services.errors import (
    AuthError,
    NotFoundError,
    ProviderError,
    ProviderUnauthorizedError,
    ScriptError,
    SyncError,
    ValidationError,
)
from pushdeploy.services.oauth import OAuthError, OAuthStateMismatchError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings.scripts_path.mkdir(parents=True, exist_ok=True)
    logger.info(
        "Starting push-deploy (api prefix %s, scripts root %s)",
        settings.api_prefix,
        settings.scripts_path,
    )
    yield
    logger.info("Shutting down push-deploy")


app = FastAPI(
    title="push-deploy",
    description="Continuous deployment triggered by GitHub push webhooks",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(repos.router, prefix=settings.api_prefix)
app.include_router(scripts.router, prefix=settings.api_prefix)
app.include_router(webhook.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "push-deploy",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Global exception handlers


def _error(status_code: int, error_code: str, message: str, detail: str = "", **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error_code": error_code, "message": message, "detail": detail, **extra},
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """Missing GitHub token or rejected webhook signature."""
    logger.warning(f"Authentication error: {exc}")
    return _error(
        status.HTTP_401_UNAUTHORIZED,
        "AUTH_ERROR",
        str(exc),
        "Authorize the application with GitHub and try again.",
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning(f"Validation error: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", str(exc))


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    logger.info(f"Not found: {exc}")
    return _error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", str(exc))


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    """
    Handle GitHub API failures.

    The upstream body is logged by the client but never returned. A 401
    from GitHub means the stored token is no longer valid and the operator
    has to reauthorize; other 4xx keep their status, everything else is 502.
    """
    if isinstance(exc, ProviderUnauthorizedError):
        return _error(
            status.HTTP_401_UNAUTHORIZED,
            "GITHUB_UNAUTHORIZED",
            "Unauthorized. GitHub rejected the stored token; please reauthorize.",
            provider_status=exc.status,
        )

    status_code = exc.status if 400 <= exc.status < 500 else status.HTTP_502_BAD_GATEWAY
    return _error(
        status_code,
        "PROVIDER_ERROR",
        "GitHub API request failed",
        str(exc),
        provider_status=exc.status,
    )


@app.exception_handler(OAuthError)
async def oauth_error_handler(request: Request, exc: OAuthError):
    logger.error(f"OAuth error: {exc}")
    if isinstance(exc, OAuthStateMismatchError):
        return _error(
            status.HTTP_401_UNAUTHORIZED,
            "STATE_MISMATCH",
            str(exc),
            "Start the authorization flow again.",
        )
    return _error(status.HTTP_400_BAD_REQUEST, "OAUTH_ERROR", str(exc))


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    logger.error(f"Sync error: {exc}")
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "SYNC_ERROR",
        "Failed to sync the working directory.",
        str(exc),
        exit_code=exc.exit_code,
        output=exc.output,
    )


@app.exception_handler(ScriptError)
async def script_error_handler(request: Request, exc: ScriptError):
    logger.error(f"Script error: {exc}")
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "SCRIPT_ERROR",
        "Failed to execute script.",
        str(exc),
        exit_code=exc.exit_code,
        output=exc.output,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are the caller's mistake: answer 400, not 422."""
    logger.warning(f"Validation error: {exc}")
    error_messages = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        error_messages.append(f"{field}: {error['msg']}")

    return _error(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Invalid request data",
        "; ".join(error_messages),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle all other unexpected exceptions.

    Logs detailed error information while returning a generic message.
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
        "The server encountered an unexpected error. Please try again later.",
    )


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.bind_address, port=settings.port, log_level=settings.log_level.lower())
