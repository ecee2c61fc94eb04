import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import ProgrammingError

from chorebank.core.errors import EconomyError
from chorebank.core.http import HandleDbError, HandleEconomyError
from chorebank.modules.auth.rbac import RequireSharedSecret
from chorebank.modules.scheduler.schemas import SchedulerTickOut, SchedulerTickRequest

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])
logger = logging.getLogger("scheduler")

SECRET_HEADER = "X-Scheduler-Secret"
RequireSchedulerSecret = RequireSharedSecret("SCHEDULER_SECRET", SECRET_HEADER)


@router.post("/tick", response_model=SchedulerTickOut)
def RunTick(
    request: Request,
    payload: SchedulerTickRequest | None = None,
    _: None = Depends(RequireSchedulerSecret),
) -> SchedulerTickOut:
    runner = request.app.state.SchedulerRunner
    try:
        result = runner.RunOnce(payload.Now if payload else None)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "scheduler")
    return SchedulerTickOut(
        SpawnedChoreIds=result.SpawnedChoreIds,
        RenewedFamilyIds=result.RenewedFamilyIds,
        Skipped=result.Skipped,
    )
