"""Data models for the face authentication microservice."""

from .api_models import (
    RegisterFaceRequest,
    RegisterFaceResponse,
    LoginFaceRequest,
    LoginFaceResponse,
    UserSummary,
    HealthResponse,
    ErrorResponse
)
from .internal_models import (
    Identity,
    MatchResult
)

__all__ = [
    "RegisterFaceRequest",
    "RegisterFaceResponse",
    "LoginFaceRequest",
    "LoginFaceResponse",
    "UserSummary",
    "HealthResponse",
    "ErrorResponse",
    "Identity",
    "MatchResult"
]
