"""
API request and response models for ProgressTrack auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request fields are Optional on purpose: "field missing" is a domain
validation failure with a specific message (e.g. "Please provide name, email
and password"), raised by the auth services rather than by pydantic.
Max lengths stay here as a cheap first filter.

Every response body carries success: bool.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)


class ResetPasswordRequest(BaseModel):
    password: Optional[str] = Field(default=None, max_length=255)


class UpdateDetailsRequest(BaseModel):
    """Partial update. Omitted keys stay None and leave the stored value alone."""

    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class UpdatePasswordRequest(BaseModel):
    """Body for PUT /auth/updatepassword. Accepts camelCase keys from the web client."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: Optional[str] = Field(default=None, alias="currentPassword", max_length=255)
    new_password: Optional[str] = Field(default=None, alias="newPassword", max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public identity returned alongside a token."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, name=user.name, email=user.email)


class UserProfile(UserSummary):
    """Identity plus account metadata, returned by /auth/me and /auth/updatedetails."""

    created_at: str = Field(serialization_alias="createdAt")

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(id=user.id, name=user.name, email=user.email, created_at=user.created_at or "")


class TokenResponse(BaseModel):
    success: bool = True
    message: str
    token: str


class AuthResponse(TokenResponse):
    user: UserSummary


class ProfileResponse(BaseModel):
    success: bool = True
    user: UserProfile


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Uniform error envelope. error is only filled in debug mode."""

    success: bool = False
    message: str
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]
