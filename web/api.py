"""API route handlers for MemberDesk"""

from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from src.models.account import (
    Account,
    ProfileEdits,
    PublicAccountSummary,
    RegistrationInput,
)
from src.services.account_service import AccountService
from src.utils.logger import get_logger
from web.auth_deps import (
    SESSION_COOKIE_NAME,
    get_account_service,
    get_current_account,
    get_session_token,
)
from .models import AuthResponse, LoginRequest, ProfileResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def _set_session_cookie(request: Request, response: Response, token: str) -> None:
    """
    Attach the session token as an HttpOnly cookie.

    Clients can also send it as Authorization: Bearer <token>.
    """
    settings = request.app.state.settings
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.auth.session_expiry_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.app.is_production,
        samesite="lax",
    )


@router.get("/health")
async def health_check():
    """Health check endpoint for deployment platforms"""
    return {"status": "healthy", "service": "memberdesk"}


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: Request,
    response: Response,
    data: RegistrationInput,
    service: AccountService = Depends(get_account_service),
):
    """
    Register a new account.

    Request (JSON):
        fullName, email, password (required); confirmPassword, phone,
        location, role, avatarUrl (optional)

    Response:
        { "success": true, "account": {...no password hash...}, "token": "..." }
    """
    result = await run_in_threadpool(service.register, data)
    _set_session_cookie(request, response, result.token)
    return AuthResponse(account=result.account, token=result.token)


@router.post("/login", response_model=AuthResponse)
async def login(
    request: Request,
    response: Response,
    data: LoginRequest,
    service: AccountService = Depends(get_account_service),
):
    """Log in with email (or full name) and password. Same response shape as /register."""
    result = await run_in_threadpool(service.login, data.identifier, data.password)
    _set_session_cookie(request, response, result.token)
    return AuthResponse(account=result.account, token=result.token)


@router.post("/logout")
async def logout(response: Response):
    """
    Drop the session cookie.

    Tokens are stateless, so a copied token stays valid until it expires;
    the account record is never touched.
    """
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"success": True}


@router.get("/users", response_model=List[PublicAccountSummary])
async def list_users(service: AccountService = Depends(get_account_service)):
    """Public directory: id, fullName and email of every account"""
    return await run_in_threadpool(service.list_public)


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(account: Account = Depends(get_current_account)):
    """The caller's own account"""
    return ProfileResponse(account=account.to_view())


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(
    request: Request,
    edits: ProfileEdits,
    service: AccountService = Depends(get_account_service),
):
    """Edit the caller's own profile. Omitted fields are left unchanged."""
    token = get_session_token(request)
    account = await run_in_threadpool(service.update_profile, token, edits)
    return ProfileResponse(account=account)
