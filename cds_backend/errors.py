"""
Error types raised by the proxy endpoints and the JSON handler that renders them
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DashboardError(Exception):
    """Error surfaced to the client as {"error": ..., "details": ...}"""

    def __init__(self, status_code: int, error: str, details=None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


class NotAuthenticated(DashboardError):
    def __init__(self):
        super().__init__(401, "Not authenticated")


class FHIRRequestError(DashboardError):
    """A FHIR server call failed; status_code mirrors the upstream status when there is one"""

    def __init__(self, status_code: int, message: str, details=None):
        super().__init__(status_code, message, details)


class LLMRequestError(DashboardError):
    pass


class ReauthRequired(Exception):
    """Access token expired and could not be refreshed"""


async def dashboard_error_handler(request: Request, exc: DashboardError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.error}")
    content = {"error": exc.error}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)
