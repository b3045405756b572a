"""
Movietrack API Response Utilities
Standardized response format and error handling
"""
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict, List, Optional
from datetime import datetime

from .config import get_settings
from .logging_config import api_logger


# ============================================================
# SUCCESS RESPONSES
# ============================================================

def paginated(items: List, total: int, page: int = 1, per_page: int = 10) -> Dict:
    """Paginated list response"""
    return {
        "ok": True,
        "data": items,
        "pagination": {
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": (total + per_page - 1) // per_page,
            "has_next": page * per_page < total,
            "has_prev": page > 1,
        },
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


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


# Common exceptions
def bad_request(message: str, code: str = "BAD_REQUEST", details: Dict = None):
    raise ApiException(400, message, code, details)

def forbidden(message: str = "Access denied"):
    raise ApiException(403, message, "FORBIDDEN")

def not_found(resource: str = "Resource", id: Any = None):
    message = f"{resource} not found" if id is None else f"{resource} '{id}' not found"
    raise ApiException(404, message, "NOT_FOUND")

def conflict(message: str = "Resource conflict"):
    raise ApiException(409, message, "CONFLICT")

def server_error(message: str = "Internal server error", cause: Optional[Exception] = None):
    api_logger.error(message, error=cause)
    details = None
    # Cause text stays in the logs unless debugging
    if cause is not None and get_settings().debug:
        details = {"cause": str(cause)}
    raise ApiException(500, message, "INTERNAL_ERROR", details)


# ============================================================
# EXCEPTION HANDLER
# ============================================================

async def api_exception_handler(request: Request, exc: ApiException) -> JSONResponse:
    """Render ApiException as the standard error envelope"""
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
            "timestamp": datetime.utcnow().isoformat() + "Z",
        },
        headers=exc.headers,
    )
