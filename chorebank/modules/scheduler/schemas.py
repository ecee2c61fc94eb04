from datetime import datetime

from pydantic import BaseModel


class SchedulerTickRequest(BaseModel):
    Now: datetime | None = None


class SchedulerTickOut(BaseModel):
    SpawnedChoreIds: list[int]
    RenewedFamilyIds: list[int]
    Skipped: bool
