"""Pydantic models for API request/response."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class TokenGrant(BaseModel):
    """Result of exchanging an authorization code at a provider's token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    raw: dict = Field(default_factory=dict)


class OAuthProfile(BaseModel):
    """User profile fetched from an OAuth provider after the code exchange."""

    email: str
    name: str | None = None
    avatar_url: str | None = None
    provider_user_id: str
    provider_username: str | None = None
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


class OAuthUser(BaseModel):
    id: int
    email: str
    name: str | None = None
    avatar_url: str | None = None


class OAuthResult(BaseModel):
    """Outcome of a sign-in callback."""

    user: OAuthUser
    session_token: str
    is_new_user: bool


class Session(BaseModel):
    """Authenticated caller, resolved from the session token."""

    user_id: int
    email: str
    organization_id: int | None = None


class RateLimitResult(BaseModel):
    success: bool
    remaining: int
    reset_after: int = 0


class VerificationPayload(BaseModel):
    """Data kept alongside an email verification token."""

    email: str
    name: str
    organization_name: str


class VerificationRequest(BaseModel):
    """Body of POST /api/auth/request-verification."""

    email: EmailStr
    name: str | None = Field(default=None, min_length=2)
    organization_name: str | None = Field(default=None, min_length=2)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("name", "organization_name", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class UnsubscribeRequest(BaseModel):
    token: str = ""


class RepositoryConnect(BaseModel):
    """Body of POST /api/repos."""

    github_id: str | int | None = None
    name: str = ""
    full_name: str = ""
    description: str | None = None
    language: str | None = None
    is_private: bool = False
    default_branch: str = "main"
