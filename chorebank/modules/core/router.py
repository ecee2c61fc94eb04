import logging

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter(prefix="/api", tags=["health"])
logger = logging.getLogger("core.health")


@router.get("/health")
async def api_health() -> dict:
    logger.debug("health check ok")
    return {"status": "ok"}


@router.get("/health/db")
def api_health_db(request: Request) -> dict:
    session_factory = getattr(request.app.state, "SessionLocal", None)
    if session_factory is None:
        logger.error("db check failed: session factory not configured")
        return {"status": "error", "detail": "database unavailable"}

    db = session_factory()
    try:
        db.execute(text("SELECT 1")).scalar()
    except SQLAlchemyError:
        logger.exception("db check failed")
        return {"status": "error", "detail": "database unavailable"}
    finally:
        db.close()
    logger.debug("db check ok")
    return {"status": "ok"}
