"""
FastAPI dependencies for authentication.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.concurrency import run_in_threadpool

from src.models.account import Account
from src.services.account_service import AccountService

SESSION_COOKIE_NAME = "session_token"


def get_session_token(request: Request) -> Optional[str]:
    """Extract session token from request (Authorization header or cookie)"""
    # Try Authorization header first
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None

    # Try cookie
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token

    return None


def get_account_service(request: Request) -> AccountService:
    """The AccountService built by create_app()"""
    return request.app.state.account_service


async def get_current_account(
    request: Request,
    service: AccountService = Depends(get_account_service),
) -> Account:
    """Dependency for protected routes; raises Unauthorized (401) otherwise"""
    token = get_session_token(request)
    return await run_in_threadpool(service.authenticate, token)
