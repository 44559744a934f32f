"""
Account service: registration, login, authentication and profile edits.

Every operation that touches account data goes through here. The HTTP
layer never writes the store directly.
"""

import secrets
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from src.auth.session_issuer import SessionIssuer
from src.models.account import (
    Account,
    AccountView,
    AuthResult,
    ProfileEdits,
    PublicAccountSummary,
    RegistrationInput,
    Role,
    is_privileged,
)
from src.services.credential_store import CredentialStore
from src.utils.exceptions import (
    DuplicateEmail,
    InvalidCredentials,
    MissingField,
    NotFound,
    PasswordMismatch,
    PasswordTooLong,
    Unauthorized,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PRIVILEGED_NAMES = ("admin", "hart")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class AccountService:
    """Orchestrates the credential store and the session issuer"""

    def __init__(
        self,
        store: CredentialStore,
        issuer: SessionIssuer,
        privileged_names: Iterable[str] = DEFAULT_PRIVILEGED_NAMES,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.issuer = issuer
        self.privileged_names = tuple(privileged_names)
        self._clock = clock
        self._dummy_hash: Optional[str] = None

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    def register(self, data: RegistrationInput) -> AuthResult:
        missing = [
            name
            for name, value in (
                ("fullName", data.full_name),
                ("email", data.email),
                ("password", data.password),
            )
            if _blank(value)
        ]
        if missing:
            raise MissingField(fields=missing)
        if data.confirm_password is not None and data.confirm_password != data.password:
            raise PasswordMismatch()
        if not self.store.password_fits(data.password):
            raise PasswordTooLong()

        full_name = data.full_name.strip()
        email = data.email.strip()

        # Cheap early rejection; insert() repeats the check under the lock
        if self.store.find_by_email(email) is not None:
            raise DuplicateEmail()

        role = self._lock_role(data.role, full_name)
        account = Account(
            id=str(uuid.uuid4()),
            full_name=full_name,
            email=email,
            phone=(data.phone or "").strip(),
            location=(data.location or "").strip(),
            avatar_url=(data.avatar_url or "").strip(),
            role=role,
            member_since=self._clock().strftime("%Y-%m"),
            password_hash=self.store.hash(data.password),
        )
        self.store.insert(account)

        logger.info("Account registered", account_id=account.id, role=account.role.value)
        return self._authenticated(account)

    def login(self, identifier: Optional[str], password: Optional[str]) -> AuthResult:
        missing = [
            name
            for name, value in (("identifier", identifier), ("password", password))
            if _blank(value)
        ]
        if missing:
            raise MissingField(fields=missing)

        account = self.store.find_by_identity(identifier.strip())
        if account is None:
            # Burn a bcrypt check so unknown identities cost the same as wrong passwords
            self.store.verify(password, self._get_dummy_hash())
            logger.info("Login failed", reason="unknown_identity")
            raise InvalidCredentials()

        if not self.store.verify(password, account.password_hash):
            logger.info("Login failed", reason="bad_password", account_id=account.id)
            raise InvalidCredentials()

        account = self._relock_stored_role(account)
        logger.info("Login succeeded", account_id=account.id)
        return self._authenticated(account)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_public(self) -> List[PublicAccountSummary]:
        """Directory of every account: id, full name and email only"""
        return [a.to_summary() for a in self.store.list_accounts()]

    def authenticate(self, token: Optional[str]) -> Account:
        """Resolve a bearer token to a live account or raise Unauthorized"""
        claims = self.issuer.verify(token)
        if claims is None:
            raise Unauthorized()
        account = self.store.find_by_id(claims.account_id)
        if account is None:
            logger.info("Session for missing account", account_id=claims.account_id)
            raise Unauthorized()
        return account

    def get_profile(self, token: Optional[str]) -> AccountView:
        return self.authenticate(token).to_view()

    # ------------------------------------------------------------------
    # Profile edits
    # ------------------------------------------------------------------

    def update_profile(self, token: Optional[str], edits: ProfileEdits) -> AccountView:
        """
        Apply edits to the caller's own account.

        Fields left as None are unchanged. The role survives only if both the
        stored name and the resulting name are privileged. Password, id and
        memberSince are never touched here.
        """
        account = self.authenticate(token)

        missing = [
            name
            for name, value in (("fullName", edits.full_name), ("email", edits.email))
            if value is not None and _blank(value)
        ]
        if missing:
            raise MissingField(fields=missing)

        changes = {}
        if edits.full_name is not None:
            changes["full_name"] = edits.full_name.strip()
        if edits.email is not None:
            changes["email"] = edits.email.strip()
        for field in ("phone", "location", "avatar_url"):
            value = getattr(edits, field)
            if value is not None:
                changes[field] = value.strip()

        new_name = changes.get("full_name", account.full_name)
        requested_role = edits.role if edits.role is not None else account.role
        if is_privileged(account.full_name, self.privileged_names) and is_privileged(
            new_name, self.privileged_names
        ):
            changes["role"] = Role.parse(requested_role)
        else:
            changes["role"] = Role.STANDARD_MEMBER

        updated = Account.model_validate({**account.model_dump(), **changes})
        try:
            self.store.update(updated)
        except NotFound as e:
            # Deleted between authenticate() and update()
            raise Unauthorized() from e

        logger.info("Profile updated", account_id=updated.id, fields=sorted(changes))
        return updated.to_view()

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def ensure_seed_admin(self, email: str, password: Optional[str]) -> Optional[Account]:
        """Create the Admin account on an empty store when a password is configured"""
        if not password:
            return None
        admin = Account(
            id=str(uuid.uuid4()),
            full_name="Admin",
            email=email,
            role=Role.ADMINISTRATOR,
            member_since=self._clock().strftime("%Y-%m"),
            password_hash=self.store.hash(password),
        )
        if self.store.insert_if_empty(admin) is None:
            return None
        logger.info("Seeded admin account", account_id=admin.id)
        return admin

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_role(self, requested: Optional[str], full_name: str) -> Role:
        if is_privileged(full_name, self.privileged_names):
            return Role.parse(requested)
        return Role.STANDARD_MEMBER

    def _relock_stored_role(self, account: Account) -> Account:
        """Demote records written before role locking existed"""
        if account.role == Role.STANDARD_MEMBER or is_privileged(
            account.full_name, self.privileged_names
        ):
            return account
        demoted = account.model_copy(update={"role": Role.STANDARD_MEMBER})
        try:
            self.store.update(demoted)
        except NotFound as e:
            raise InvalidCredentials() from e
        logger.warning("Reset unlocked role", account_id=account.id, role=account.role.value)
        return demoted

    def _authenticated(self, account: Account) -> AuthResult:
        token = self.issuer.issue(account.id, account.email)
        return AuthResult(account=account.to_view(), token=token)

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.store.hash(secrets.token_urlsafe(16))
        return self._dummy_hash
