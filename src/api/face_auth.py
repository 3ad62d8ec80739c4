"""
Face authentication API endpoints for registration and login.
"""

import json
import math
import time
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from src.config import settings
from src.models.api_models import (
    ErrorResponse,
    LoginFaceResponse,
    RegisterFaceResponse,
    UserSummary
)
from src.services.auth_service import (
    AuthenticationService,
    NotRecognized,
    RateLimitExceeded,
    StorageError,
    ValidationError,
    get_auth_service
)
from src.observability import (
    trace_function,
    record_login_metrics,
    record_registration_metrics
)

logger = structlog.get_logger()
router = APIRouter(tags=["face-authentication"])

REGISTER_FAILED_MESSAGE = "Failed to register user"
NOT_RECOGNIZED_MESSAGE = "Face not recognized. Please register or try again."
LOGIN_FAILED_MESSAGE = "Authentication failed"


def create_error_response(message: str, status_code: int, headers: Dict[str, str] = None) -> JSONResponse:
    """Create standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
        headers=headers
    )


def rate_limit_message(window_minutes: int) -> str:
    unit = "minute" if window_minutes == 1 else "minutes"
    return f"Too many login attempts. Please wait {window_minutes} {unit}."


def get_client_ip(request: Request) -> str:
    """
    Client identity for rate limiting.

    ``X-Forwarded-For`` is honoured only when the service runs behind a
    trusted reverse proxy, since clients can set it freely.
    """
    if settings.trust_forwarded_for:
        forwarded_for = request.headers.get("X-Forwarded-For", "")
        client_ip = forwarded_for.split(",")[0].strip()
        if client_ip:
            return client_ip
    return request.client.host if request.client else "unknown"


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Parse the request body, treating invalid JSON or non-objects as empty."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


@router.post(
    "/register-face",
    status_code=201,
    response_model=RegisterFaceResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
@trace_function("register_face_endpoint")
async def register_face(
    http_request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service)
) -> Any:
    """
    Register a named identity with its face embedding.

    Body: ``{"name": str, "embedding": number[]}``. The response echoes only
    the identity's id and name, never the embedding.
    """
    body = await read_json_body(http_request)
    start_time = time.time()

    try:
        identity = await auth_service.register(body.get("name"), body.get("embedding"))
    except ValidationError as e:
        record_registration_metrics(success=False, processing_time=time.time() - start_time)
        logger.info("Registration rejected", reason=str(e))
        return create_error_response(str(e), 400)
    except StorageError as e:
        record_registration_metrics(success=False, processing_time=time.time() - start_time)
        logger.error("Registration failed", error=str(e))
        return create_error_response(REGISTER_FAILED_MESSAGE, 500)
    except Exception as e:
        record_registration_metrics(success=False, processing_time=time.time() - start_time)
        logger.error("Unexpected registration error", error=str(e), error_type=type(e).__name__)
        return create_error_response(REGISTER_FAILED_MESSAGE, 500)

    record_registration_metrics(success=True, processing_time=time.time() - start_time)
    logger.info("Registration completed", user_id=identity.id)

    response = RegisterFaceResponse(
        message="User registered successfully",
        user=UserSummary(id=identity.id, name=identity.name)
    )
    return JSONResponse(status_code=201, content=response.model_dump())


@router.post(
    "/login-face",
    response_model=LoginFaceResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse}
    }
)
@trace_function("login_face_endpoint")
async def login_face(
    http_request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service)
) -> Any:
    """
    Log in by matching a face embedding against all registered identities.

    Body: ``{"embedding": number[]}``. Attempts are rate limited per client IP.
    """
    body = await read_json_body(http_request)
    client_ip = get_client_ip(http_request)
    start_time = time.time()

    try:
        result = await auth_service.login(body.get("embedding"), client_ip)
    except RateLimitExceeded as e:
        record_login_metrics("rate_limited", time.time() - start_time)
        logger.warning("Login rate limited", client_ip=client_ip, retry_after=round(e.retry_after_seconds, 1))
        return create_error_response(
            rate_limit_message(e.window_minutes),
            429,
            headers={"Retry-After": str(max(1, math.ceil(e.retry_after_seconds)))}
        )
    except ValidationError as e:
        record_login_metrics("invalid_input", time.time() - start_time)
        logger.info("Login rejected", client_ip=client_ip, reason=str(e))
        return create_error_response(str(e), 400)
    except NotRecognized:
        record_login_metrics("not_recognized", time.time() - start_time)
        logger.info("Face not recognized", client_ip=client_ip)
        return create_error_response(NOT_RECOGNIZED_MESSAGE, 401)
    except StorageError as e:
        record_login_metrics("error", time.time() - start_time)
        logger.error("Login failed", client_ip=client_ip, error=str(e))
        return create_error_response(LOGIN_FAILED_MESSAGE, 500)
    except Exception as e:
        record_login_metrics("error", time.time() - start_time)
        logger.error("Unexpected login error", client_ip=client_ip, error=str(e), error_type=type(e).__name__)
        return create_error_response(LOGIN_FAILED_MESSAGE, 500)

    record_login_metrics("success", time.time() - start_time, distance=result.distance)
    logger.info(
        "Login successful",
        client_ip=client_ip,
        user_id=result.identity.id,
        distance=round(result.distance, 4)
    )

    response = LoginFaceResponse(
        message="Login successful",
        user=UserSummary(id=result.identity.id, name=result.identity.name),
        distance=result.distance
    )
    return JSONResponse(status_code=200, content=response.model_dump())
