import logging

from fastapi import HTTPException, status

from chorebank.core.errors import EconomyError

logger = logging.getLogger("app.http")

ERROR_STATUS_CODES = {
    "NotFound": status.HTTP_404_NOT_FOUND,
    "InvalidTransition": status.HTTP_409_CONFLICT,
    "InsufficientBalance": status.HTTP_409_CONFLICT,
    "Expired": status.HTTP_400_BAD_REQUEST,
    "Exhausted": status.HTTP_400_BAD_REQUEST,
    "AlreadyUsed": status.HTTP_400_BAD_REQUEST,
    "Invalid": status.HTTP_400_BAD_REQUEST,
    "ConcurrencyConflict": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def StatusCodeForError(exc: EconomyError) -> int:
    return ERROR_STATUS_CODES.get(exc.Kind, status.HTTP_400_BAD_REQUEST)


def HandleEconomyError(exc: EconomyError) -> None:
    status_code = StatusCodeForError(exc)
    if status_code >= 500:
        logger.warning("economy error kind=%s message=%s", exc.Kind, exc.Message)
    raise HTTPException(status_code=status_code, detail=exc.Message) from exc


def HandleDbError(exc: Exception, area: str) -> None:
    logging.getLogger(area).exception("%s database error", area)
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{area.capitalize()} storage not initialized. Run alembic upgrade head.",
    ) from exc
