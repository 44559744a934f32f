"""API request/response models"""

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from src.models.account import AccountView


class LoginRequest(BaseModel):
    """Login by email or full name. Older clients send it as 'username'."""
    model_config = ConfigDict(populate_by_name=True)

    identifier: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("identifier", "username", "email"),
    )
    password: Optional[str] = Field(default=None, repr=False)


class AuthResponse(BaseModel):
    success: bool = True
    account: AccountView
    token: str


class ProfileResponse(BaseModel):
    success: bool = True
    account: AccountView


class ErrorResponse(BaseModel):
    success: bool = False
    kind: str
    message: str
    fields: List[str] = Field(default_factory=list)

