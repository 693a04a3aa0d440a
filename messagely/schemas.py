"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator

from messagely.security import MAX_PASSWORD_BYTES


def _as_utc(value: datetime) -> datetime:
    # The database hands back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Serialized with a trailing Z
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# =============================================================================
# Pydantic Request Models
# =============================================================================

class RegisterRequest(BaseModel):
    """Body for POST /auth/register."""
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=32)

    @field_validator("password")
    @classmethod
    def password_length_guard(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be <= {MAX_PASSWORD_BYTES} bytes")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "username": "alice",
                    "password": "secret",
                    "first_name": "Alice",
                    "last_name": "Liddell",
                    "phone": "+14155550100",
                }
            ]
        }
    }


class LoginRequest(BaseModel):
    """Body for POST /auth/login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("password")
    @classmethod
    def login_password_length_guard(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be <= {MAX_PASSWORD_BYTES} bytes")
        return v


class MessageCreateRequest(BaseModel):
    """Body for POST /messages; the sender is the authenticated user."""
    to_username: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1, max_length=4096)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class TokenResponse(BaseModel):
    """Returned by register and login."""
    token: str


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class UserSummary(BaseModel):
    """One entry of GET /users."""
    username: str
    first_name: str
    last_name: str


class UserDetail(BaseModel):
    """GET /users/{username}; never includes the password hash."""
    username: str
    first_name: str
    last_name: str
    phone: str
    join_at: UtcDatetime
    last_login_at: Optional[UtcDatetime] = None


class MessageParticipant(BaseModel):
    """Profile of the other party embedded in a message."""
    username: str
    first_name: str
    last_name: str
    phone: str


class MessageToUser(BaseModel):
    """A message sent by the user, with its recipient."""
    id: int
    to_user: MessageParticipant
    body: str
    sent_at: UtcDatetime
    read_at: Optional[UtcDatetime] = None


class MessageFromUser(BaseModel):
    """A message received by the user, with its sender."""
    id: int
    from_user: MessageParticipant
    body: str
    sent_at: UtcDatetime
    read_at: Optional[UtcDatetime] = None


class MessageDetail(BaseModel):
    """GET /messages/{id}."""
    id: int
    body: str
    sent_at: UtcDatetime
    read_at: Optional[UtcDatetime] = None
    from_user: MessageParticipant
    to_user: MessageParticipant


class MessageCreated(BaseModel):
    """POST /messages."""
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: UtcDatetime

    model_config = {"from_attributes": True}


class MessageReadResponse(BaseModel):
    """POST /messages/{id}/read."""
    id: int
    read_at: UtcDatetime


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
