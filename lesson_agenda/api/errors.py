import logging

from fastapi import HTTPException

from lesson_agenda.exceptions import ConflictError, NotFoundError, ValidationError


def to_http_error(e: ValueError, action: str, logger: logging.Logger) -> HTTPException:
    """Map agenda errors onto HTTP responses; plain ValueError stays a 400."""
    logger.warning("%s failed: %s", action, e)
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail={"reason": e.reason, "message": e.message})
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))
