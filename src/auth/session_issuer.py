"""
Stateless session tokens.

A token is an HS256-signed JWT carrying sub (account id), email, iat and
exp. Validity is proven only by the signature and the clock; there is no
session table and no revocation list.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from src.models.account import SessionClaims
from src.utils.logger import get_logger

logger = get_logger(__name__)

SESSION_EXPIRY_DAYS = 7
REQUIRED_CLAIMS = ["sub", "email", "iat", "exp"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionIssuer:
    """Issues and verifies signed session tokens"""

    def __init__(
        self,
        secret: str,
        lifetime: timedelta = timedelta(days=SESSION_EXPIRY_DAYS),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self.lifetime = lifetime
        self.algorithm = algorithm
        self._clock = clock

    def __repr__(self) -> str:
        return f"SessionIssuer(algorithm={self.algorithm!r}, lifetime={self.lifetime!r})"

    def issue(self, account_id: str, email: str) -> str:
        """Mint a token for the account, valid for ``lifetime``"""
        now = self._clock()
        payload = {
            "sub": str(account_id),
            "email": email,
            "iat": int(now.timestamp()),
            "exp": int((now + self.lifetime).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> Optional[SessionClaims]:
        """
        Return the token's claims, or None if it is malformed, badly signed,
        expired, or issued in the future.
        """
        if not token:
            return None
        try:
            data = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={
                    "require": REQUIRED_CLAIMS,
                    # Time checks use the injected clock below
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected session token", reason=type(e).__name__)
            return None

        try:
            issued_at = datetime.fromtimestamp(int(data["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(data["exp"]), tz=timezone.utc)
            account_id = str(data["sub"])
            email = data["email"]
        except (TypeError, ValueError, OverflowError, OSError):
            logger.debug("Rejected session token", reason="bad_claims")
            return None

        now = self._clock()
        if not isinstance(email, str) or not account_id:
            return None
        if issued_at > now:
            logger.debug("Rejected session token", reason="issued_in_future")
            return None
        if now >= expires_at:
            logger.debug("Rejected session token", reason="expired")
            return None

        return SessionClaims(
            account_id=account_id,
            email=email,
            issued_at=issued_at,
            expires_at=expires_at,
        )
