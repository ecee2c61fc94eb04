from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import httpx

from chorebank.core.clock import NowUtc
from chorebank.core.env import ReadEnv, ReadIntEnv

logger = logging.getLogger("notifications")

EVENT_CHORE_SUBMITTED = "ChoreSubmitted"
EVENT_CHORE_APPROVED = "ChoreApproved"
EVENT_CHORE_REJECTED = "ChoreRejected"
EVENT_LEVEL_UP = "LevelUp"
EVENT_REWARD_REDEEMED = "RewardRedeemed"
EVENT_REWARD_GIVEN = "RewardGiven"
EVENT_REWARD_REFUNDED = "RewardRefunded"
EVENT_POINTS_ADJUSTED = "PointsAdjusted"
EVENT_CHORES_SPAWNED = "ChoresSpawned"
EVENT_SUBSCRIPTION_CHANGED = "SubscriptionChanged"
EVENT_COUPON_APPLIED = "CouponApplied"


@dataclass(frozen=True)
class NotifierConfig:
    webhook_url: str | None
    timeout_seconds: int = 5


@dataclass
class NotificationDispatcher:
    Config: NotifierConfig

    def Dispatch(self, event_type: str, family_id: int, payload: dict | None = None) -> bool:
        # Fire-and-forget: delivery problems are logged, never raised to callers.
        body = BuildNotificationPayload(event_type, family_id, payload)
        if not self.Config.webhook_url:
            logger.debug("notification skipped (no webhook) type=%s family_id=%s", event_type, family_id)
            return False
        try:
            with httpx.Client(timeout=self.Config.timeout_seconds) as client:
                response = client.post(self.Config.webhook_url, json=body)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "notification delivery failed type=%s family_id=%s error=%s",
                event_type,
                family_id,
                exc,
            )
            return False
        except Exception:  # noqa: BLE001
            logger.exception("notification dispatch crashed type=%s family_id=%s", event_type, family_id)
            return False
        return True


def BuildNotifierConfig() -> NotifierConfig:
    return NotifierConfig(
        webhook_url=ReadEnv("NOTIFICATIONS_WEBHOOK_URL") or None,
        timeout_seconds=ReadIntEnv("NOTIFICATIONS_TIMEOUT_SECONDS", 5),
    )


def _SerializeJson(value: dict | None) -> dict | None:
    if value is None:
        return None
    # Round-trip so dates and decimals become plain JSON before they leave the process.
    return json.loads(json.dumps(value, default=str, separators=(",", ":")))


def BuildNotificationPayload(event_type: str, family_id: int, payload: dict | None) -> dict:
    return {
        "Type": event_type,
        "FamilyId": family_id,
        "Payload": _SerializeJson(payload) or {},
        "CreatedAt": NowUtc().isoformat(),
    }
