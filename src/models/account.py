"""Account data models"""

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def normalize(value: Optional[str]) -> str:
    """Case-folded, whitespace-trimmed form used for equality comparisons"""
    return (value or "").strip().casefold()


def is_privileged(name: Optional[str], privileged_names: Iterable[str]) -> bool:
    return normalize(name) in {normalize(n) for n in privileged_names}


class Role(str, Enum):
    """Account role tag"""
    STANDARD_MEMBER = "Standard Member"
    MODERATOR = "Moderator"
    ADMINISTRATOR = "Administrator"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Map a caller-supplied role onto the enum; anything unknown is the default."""
        if isinstance(value, Role):
            return value
        wanted = normalize(str(value)) if value is not None else ""
        for role in cls:
            if wanted in (normalize(role.value), normalize(role.name), normalize(role.value.replace(" ", ""))):
                return role
        return cls.STANDARD_MEMBER


class CamelModel(BaseModel):
    """Base for models that travel as camelCase JSON (fullName, avatarUrl, ...)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountView(CamelModel):
    """Sanitized account: everything except the password hash"""
    id: str
    full_name: str
    email: str
    phone: str = ""
    location: str = ""
    avatar_url: str = ""
    role: Role = Role.STANDARD_MEMBER
    member_since: str


class Account(AccountView):
    """Persisted account record"""
    model_config = ConfigDict(frozen=True)

    password_hash: str = Field(repr=False)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Older files used numeric timestamps as ids
        return str(value) if isinstance(value, int) else value

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Role:
        return Role.parse(value)

    @field_validator("phone", "location", "avatar_url", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def to_view(self) -> AccountView:
        return AccountView(**self.model_dump(exclude={"password_hash"}))

    def to_summary(self) -> "PublicAccountSummary":
        return PublicAccountSummary(id=self.id, full_name=self.full_name, email=self.email)

    def to_record(self) -> dict:
        """Serialized form written to the users file"""
        return self.model_dump(mode="json", by_alias=True)


class PublicAccountSummary(CamelModel):
    """Unauthenticated directory entry; no role, contact info or secrets"""
    id: str
    full_name: str
    email: str


class RegistrationInput(CamelModel):
    """Registration request. Required fields are checked by AccountService."""
    full_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    confirm_password: Optional[str] = Field(default=None, repr=False)
    phone: Optional[str] = None
    location: Optional[str] = None
    role: Optional[str] = None
    avatar_url: Optional[str] = None


class ProfileEdits(CamelModel):
    """Profile edit request; None means leave the field unchanged"""
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    role: Optional[str] = None
    avatar_url: Optional[str] = None


class SessionClaims(BaseModel):
    """Identity proven by a verified session token"""
    account_id: str
    email: str
    issued_at: datetime
    expires_at: datetime


class AuthResult(BaseModel):
    """Sanitized account plus a freshly issued token"""
    account: AccountView
    token: str = Field(repr=False)
