"""FastAPI main application for MemberDesk"""

from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.auth.session_issuer import SessionIssuer
from src.services.account_service import AccountService
from src.services.credential_store import CredentialStore
from src.utils.config import Settings, config_manager, resolve_session_secret
from src.utils.exceptions import InvalidInput, MemberDeskError
from src.utils.logger import get_logger, setup_logger
from .api import router as api_router
from .models import ErrorResponse

logger = get_logger(__name__)


def build_account_service(settings: Settings) -> AccountService:
    """Wire the store, the issuer and the service from settings"""
    store = CredentialStore(
        settings.storage.users_file,
        bcrypt_rounds=settings.auth.bcrypt_rounds,
        lock_timeout_seconds=settings.storage.lock_timeout_seconds,
    )
    issuer = SessionIssuer(
        resolve_session_secret(settings),
        lifetime=timedelta(days=settings.auth.session_expiry_days),
        algorithm=settings.auth.jwt_algorithm,
    )
    return AccountService(store, issuer, privileged_names=settings.auth.privileged_names)


async def memberdesk_error_handler(request: Request, exc: MemberDeskError) -> JSONResponse:
    """Structured error body; callers branch on 'kind', never on 'message'"""
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, kind=exc.kind)
    body = ErrorResponse(
        kind=exc.kind,
        message=exc.message,
        fields=exc.fields,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Wrong-typed fields or a non-object body, reported in the MemberDesk error shape"""
    fields = []
    for error in exc.errors():
        loc = error.get("loc", ())
        name = loc[-1] if len(loc) > 1 and isinstance(loc[-1], str) else None
        if name and name not in fields:
            fields.append(name)
    return await memberdesk_error_handler(request, InvalidInput(fields=fields))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path, error_type=type(exc).__name__)
    body = ErrorResponse(kind="InternalError", message="Internal server error")
    return JSONResponse(status_code=500, content=body.model_dump())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Raises ConfigError at startup when production settings are incomplete
    (e.g. SESSION_SECRET missing).
    """
    settings = settings or config_manager.load_settings()
    setup_logger(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        file_path=settings.logging.file_path,
        max_bytes=settings.logging.max_bytes,
        backup_count=settings.logging.backup_count,
    )

    app = FastAPI(
        title="MemberDesk",
        description="Account registration, login and profile API",
        version=settings.app.version,
    )
    app.state.settings = settings
    app.state.account_service = build_account_service(settings)

    app.state.account_service.ensure_seed_admin(settings.admin.email, settings.admin.password)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(MemberDeskError, memberdesk_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(api_router)

    logger.info(
        "MemberDesk app created",
        environment=settings.app.environment,
        users_file=settings.storage.users_file,
    )
    return app
