"""
API request and response models for Shelfnote REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
library/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# bcrypt reads at most 72 bytes; 64 characters keeps ASCII passwords inside it.
_PASSWORD_MAX = 64


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    username is not stripped or case-folded: lookups are exact.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    name: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255, pattern=r"^\S+$")
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """Returned by login and register. The token is also set as a cookie."""

    model_config = ConfigDict(frozen=True)

    session_token: str
    token_type: str = "bearer"
    expires_at: str
    username: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    name: str
    username: str
    federated: bool


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------


class BookCreate(BaseModel):
    """Request body for POST /api/v1/users/{username}/books."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    author: str = Field(default="", max_length=255)
    isbn: Optional[str] = Field(default=None, max_length=20)
    rating: Optional[int] = Field(default=None, ge=0, le=10)
    summary: Optional[str] = Field(default=None, max_length=5000)
    notes: Optional[str] = Field(default=None, max_length=5000)
    review: Optional[str] = Field(default=None, max_length=5000)


class BookUpdate(BaseModel):
    """Request body for PUT /api/v1/books/{book_id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    author: Optional[str] = Field(default=None, max_length=255)
    isbn: Optional[str] = Field(default=None, max_length=20)
    rating: Optional[int] = Field(default=None, ge=0, le=10)
    summary: Optional[str] = Field(default=None, max_length=5000)
    notes: Optional[str] = Field(default=None, max_length=5000)
    review: Optional[str] = Field(default=None, max_length=5000)


class BookResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    title: str
    author: str
    isbn: Optional[str] = None
    rating: Optional[int] = None
    summary: Optional[str] = None
    notes: Optional[str] = None
    review: Optional[str] = None
    created_at: str


# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
