"""Pydantic models for API requests and responses."""

import math
from datetime import datetime
from typing import Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, field_validator

# Upper bound on accepted vector length; face models emit 128 or 512 values.
MAX_EMBEDDING_LENGTH = 4096


def _check_finite(values):
    """Reject NaN, infinities and integers too large for a float."""
    try:
        finite = all(math.isfinite(value) for value in values)
    except OverflowError:
        finite = False
    if not finite:
        raise ValueError("Embedding values must be finite numbers")
    return values


class RegisterFaceRequest(BaseModel):
    """Request model for face registration endpoint."""

    name: str = Field(..., min_length=1, max_length=200, description="Display name of the person")
    embedding: List[Union[StrictInt, StrictFloat]] = Field(
        ..., min_length=1, max_length=MAX_EMBEDDING_LENGTH, description="Face embedding vector"
    )

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Reject names that are blank after trimming."""
        v = v.strip()
        if not v:
            raise ValueError('Name must not be blank')
        return v

    @field_validator("embedding")
    @classmethod
    def validate_embedding(cls, v):
        return _check_finite(v)


class LoginFaceRequest(BaseModel):
    """Request model for face login endpoint."""

    embedding: List[Union[StrictInt, StrictFloat]] = Field(
        ..., min_length=1, max_length=MAX_EMBEDDING_LENGTH, description="Face embedding vector"
    )

    @field_validator("embedding")
    @classmethod
    def validate_embedding(cls, v):
        return _check_finite(v)


class UserSummary(BaseModel):
    """Non-biometric view of a registered identity."""

    id: str
    name: str


class RegisterFaceResponse(BaseModel):
    """Response model for face registration endpoint."""

    message: str = Field(..., description="Human-readable registration result")
    user: UserSummary

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "message": "User registered successfully",
            "user": {"id": "5b7c0a52-6c2e-4f44-9d55-b1a3f0c4f6e1", "name": "Asha"}
        }
    })


class LoginFaceResponse(BaseModel):
    """Response model for face login endpoint."""

    message: str = Field(..., description="Human-readable login result")
    user: UserSummary
    distance: float = Field(..., ge=0.0, description="Euclidean distance to the matched embedding")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "message": "Login successful",
            "user": {"id": "5b7c0a52-6c2e-4f44-9d55-b1a3f0c4f6e1", "name": "Asha"},
            "distance": 0.31
        }
    })


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Short, non-technical error message")

    model_config = ConfigDict(json_schema_extra={
        "example": {"error": "Face not recognized. Please register or try again."}
    })


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Service version")
    components: Dict[str, str] = Field(default_factory=dict, description="Per-component health")
