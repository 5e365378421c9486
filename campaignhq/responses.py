"""
CampaignHQ API Response Utilities
Standardized error format and domain error translation
"""
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from .exceptions import (
    CampaignDataError,
    CampaignError,
    CampaignNotFound,
    CampaignSendError,
    CampaignTransitionConflict,
    CampaignValidationError,
    TemplateNotFound,
)
from .logging_config import api_logger


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# ERROR RESPONSES
# ============================================================

class ApiException(HTTPException):
    """Custom API exception with error codes"""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str = None,
        details: Dict = None,
    ):
        self.error_code = error_code or f"ERR_{status_code}"
        self.details = details
        super().__init__(status_code=status_code, detail=message)


def bad_request(message: str, code: str = "BAD_REQUEST", details: Dict = None):
    raise ApiException(400, message, code, details)

def not_found(resource: str = "Resource", id: Any = None):
    message = f"{resource} not found" if id is None else f"{resource} '{id}' not found"
    raise ApiException(404, message, "NOT_FOUND")

def conflict(message: str = "Resource conflict"):
    raise ApiException(409, message, "CONFLICT")

def server_error(message: str = "Internal server error", code: str = "INTERNAL_ERROR"):
    raise ApiException(500, message, code)


def raise_for_campaign_error(exc: CampaignError, campaign_id: Optional[int] = None):
    """Translate a pipeline exception into the matching ApiException."""
    if isinstance(exc, CampaignNotFound):
        not_found("Campaign", exc.campaign_id)
    if isinstance(exc, TemplateNotFound):
        bad_request(str(exc), "TEMPLATE_NOT_FOUND")
    if isinstance(exc, CampaignValidationError):
        bad_request(str(exc), "VALIDATION_ERROR", {"campaign_id": campaign_id})
    if isinstance(exc, CampaignTransitionConflict):
        conflict(str(exc))
    if isinstance(exc, CampaignDataError):
        bad_request(str(exc), "INVALID_CAMPAIGN_DATA", {"campaign_id": campaign_id})
    if isinstance(exc, CampaignSendError):
        server_error(str(exc), "SEND_FAILED")
    server_error(str(exc))


# ============================================================
# EXCEPTION HANDLER
# ============================================================

async def api_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for API errors"""

    if isinstance(exc, ApiException):
        api_logger.warning(
            f"API Error: {exc.detail}",
            status_code=exc.status_code,
            error_code=exc.error_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "ok": False,
                "error": exc.detail,
                "error_code": exc.error_code,
                "details": exc.details,
                "timestamp": _timestamp(),
            }
        )

    if isinstance(exc, HTTPException):
        api_logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "ok": False,
                "error": exc.detail,
                "error_code": f"HTTP_{exc.status_code}",
                "timestamp": _timestamp(),
            }
        )

    api_logger.error(
        f"Unexpected error: {exc}",
        error=exc,
        path=request.url.path,
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": "An unexpected error occurred",
            "error_code": "INTERNAL_ERROR",
            "timestamp": _timestamp(),
        }
    )
