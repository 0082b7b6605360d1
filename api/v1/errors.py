import logging

from fastapi import HTTPException

logger = logging.getLogger(__name__)


def to_http_exception(error: Exception) -> HTTPException:
    """Map service-layer exceptions onto HTTP status codes."""
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, PermissionError):
        status = 401 if str(error) == "Not authenticated" else 403
        return HTTPException(status_code=status, detail=str(error))
    if isinstance(error, LookupError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))

    logger.error(f"Unhandled error: {error}", exc_info=error)
    return HTTPException(status_code=500, detail=f"Internal server error: {error}")
