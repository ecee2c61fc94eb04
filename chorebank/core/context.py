from __future__ import annotations

import logging
from dataclasses import dataclass

from starlette.requests import Request

from chorebank.core.cache import FamilySnapshotCache
from chorebank.core.env import ReadIntEnv
from chorebank.modules.notifications.dispatcher import BuildNotifierConfig, NotificationDispatcher

logger = logging.getLogger("app.context")


@dataclass
class ServiceContext:
    Cache: FamilySnapshotCache
    Notifier: NotificationDispatcher

    def AfterCommit(self, family_id: int, event_type: str | None = None, payload: dict | None = None) -> None:
        # Runs once the primary transaction is durable; failures here never undo it.
        try:
            self.Cache.Invalidate(family_id)
        except Exception:  # noqa: BLE001
            logger.exception("cache invalidation failed family_id=%s", family_id)
        if not event_type:
            return
        try:
            self.Notifier.Dispatch(event_type, family_id, payload)
        except Exception:  # noqa: BLE001
            logger.exception("notification failed type=%s family_id=%s", event_type, family_id)


def BuildServiceContext(cache: FamilySnapshotCache | None = None, notifier: NotificationDispatcher | None = None) -> ServiceContext:
    return ServiceContext(
        Cache=cache or FamilySnapshotCache(ttl_seconds=ReadIntEnv("FAMILY_CACHE_TTL_SECONDS", 300)),
        Notifier=notifier or NotificationDispatcher(BuildNotifierConfig()),
    )


def GetServiceContext(request: Request) -> ServiceContext:
    return request.app.state.ServiceContext
