"""
API response models for RoleGate HTTP endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for every error response: {"error": {"code", "message", "detail"}}."""

    error: ErrorDetail


class WelcomeResponse(BaseModel):
    message: str
    username: Optional[str] = None


class PrincipalResponse(BaseModel):
    """Identity of the caller as resolved for this request."""

    username: str
    roles: list[str] = Field(default_factory=list)
