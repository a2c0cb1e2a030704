"""codeElevateX API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.auth.service import UserService
from src.config import Settings, get_settings
from src.core.context import get_request_id
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.exceptions import AppError
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import init_redis, shutdown_redis
from src.courses.service import CourseService
from src.enrollments.router import admin_router as enrollments_admin_router
from src.enrollments.router import router as enrollments_router
from src.enrollments.service import EnrollmentService
from src.health import router as health_router
from src.notifications import EmailService, NotificationDispatcher
from src.payments.gateway import PaymentGateway
from src.payments.router import router as payments_router
from src.payments.service import PaymentService
from src.progress.router import router as progress_router
from src.progress.runner import CodeRunnerClient
from src.progress.service import ProgressService


if TYPE_CHECKING:
    import redis.asyncio as redis


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(
    settings, log_dir=Path(settings.log_dir), to_files=not settings.is_testing
)

logger = get_logger(__name__)


def wire_services(
    app: FastAPI,
    session: Any,
    settings: Settings,
    redis_client: "redis.Redis | None" = None,
    code_runner: CodeRunnerClient | None = None,
    gateway: PaymentGateway | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> None:
    """Build every service on ``session`` and publish them on ``app.state``.

    Collaborators can be passed in; otherwise they are built from settings.
    """
    keyspace = settings.cassandra_keyspace

    user_service = UserService(session=session, keyspace=keyspace)
    course_service = CourseService(session=session, keyspace=keyspace)
    enrollment_service = EnrollmentService(
        session=session,
        keyspace=keyspace,
        course_service=course_service,
        user_service=user_service,
    )

    if code_runner is None:
        code_runner = CodeRunnerClient(
            base_url=settings.code_runner_url,
            timeout=settings.code_runner_timeout_seconds,
        )
    progress_service = ProgressService(
        session=session,
        keyspace=keyspace,
        enrollment_service=enrollment_service,
        course_service=course_service,
        code_runner=code_runner,
    )

    if dispatcher is None:
        email_service = None
        if settings.email_configured:
            email_service = EmailService(
                credentials_path=settings.email_credentials_path,
                sender_address=settings.email_sender_address,
                sender_name=settings.email_sender_name,
            )
            logger.info("email_service_initialized", sender=settings.email_sender_address)
        dispatcher = NotificationDispatcher(email_service, settings.frontend_url)

    if gateway is None:
        if not settings.payment_gateway_configured:
            logger.warning(
                "payment_gateway_not_configured",
                message="Payment signatures will not verify",
            )
        gateway = PaymentGateway(
            base_url=settings.payment_gateway_url,
            key_id=settings.payment_key_id,
            key_secret=settings.payment_key_secret,
            webhook_secret=settings.payment_webhook_secret,
            timeout=settings.payment_timeout_seconds,
        )
    payment_service = PaymentService(
        gateway=gateway,
        enrollment_service=enrollment_service,
        user_service=user_service,
        course_service=course_service,
        dispatcher=dispatcher,
        redis_client=redis_client,
        default_currency=settings.payment_default_currency,
        order_ttl_seconds=settings.payment_order_ttl_seconds,
    )

    app.state.cassandra_session = session
    app.state.user_service = user_service
    app.state.course_service = course_service
    app.state.enrollment_service = enrollment_service
    app.state.progress_service = progress_service
    app.state.payment_service = payment_service
    app.state.notification_dispatcher = dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Redis is optional: without it pending orders are not remembered
    redis_client = None
    try:
        redis_client = await init_redis()
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - pending orders will not be remembered",
        )

    try:
        session = await init_async_cassandra()
        wire_services(app, session, settings, redis_client=redis_client)
        logger.info("services_initialized")
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    logger.info("shutting_down_application")
    dispatcher = getattr(app.state, "notification_dispatcher", None)
    if dispatcher is not None:
        await dispatcher.drain()
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # debug stays off so Starlette never renders stack traces
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="codeElevateX - payments, enrollments and learning progress",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> ORJSONResponse:
        """Map domain errors to their HTTP status."""
        status_code = int(exc.status_code)
        log = logger.error if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else logger.warning
        log(
            "app_error",
            error_type=type(exc).__name__,
            code=exc.code,
            status_code=status_code,
            detail=exc.message,
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status_code,
            content={
                "error": True,
                "success": False,
                "message": exc.message,
                "code": exc.code,
                "status_code": status_code,
                "request_id": _get_request_id_safe(request),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "success": False,
                "message": str(exc.detail)
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error",
                "status_code": exc.status_code,
                "request_id": _get_request_id_safe(request),
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle request validation errors (safe to expose)."""
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "success": False,
                "message": "Validation error",
                "code": "validation_error",
                "status_code": 422,
                "request_id": _get_request_id_safe(request),
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all: full details are logged, the response stays generic."""
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "success": False,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": _get_request_id_safe(request),
            },
        )

    app.include_router(health_router)
    app.include_router(payments_router)
    app.include_router(enrollments_router)
    app.include_router(enrollments_admin_router)
    app.include_router(progress_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        return {
            "message": "codeElevateX API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.api_reload,
    )
