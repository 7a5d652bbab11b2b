"""
Donation reminder sweep
"""

from typing import Callable, Optional
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
import logging

from redis.exceptions import RedisError

from core.cache import CacheManager
from core.config import get_matching_config, get_redis_config
from core.errors import StoreError
from core.phone import mask_phone_number, normalize_phone_number
from domains.notifications.services import templates
from domains.notifications.services.dispatcher import NotificationDispatcher
from domains.users.models.user import User
from domains.users.repositories.user_store import UserStore


logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "reminder-sweep"
LAST_SWEEP_KEY = "reminder-sweep:last"
LAST_SWEEP_TTL_SECONDS = 7 * 24 * 3600


@dataclass
class SweepReport:
    considered: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    locked_out: bool = False

    def to_dict(self):
        return {
            "considered": self.considered,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "locked_out": self.locked_out,
        }


class ReminderSweep:
    """
    Texts available donors whose last donation is older than the lapse
    threshold.

    A Redis lock keeps overlapping sweeps from running together and a
    per-donor cooldown key keeps a donor from being reminded twice in one
    window. Without Redis the sweep falls back to ``last_reminder_sent_at``.
    """

    def __init__(
        self,
        user_store: UserStore,
        dispatcher: NotificationDispatcher,
        cache: Optional[CacheManager] = None,
        lapse_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        redis_config = get_redis_config()
        self.user_store = user_store
        self.dispatcher = dispatcher
        self.cache = cache
        self.lapse = timedelta(days=lapse_days or get_matching_config().reminder_lapse_days)
        self.cooldown = timedelta(seconds=redis_config.reminder_cooldown_seconds)
        self.lock_ttl = redis_config.sweep_lock_ttl_seconds
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self) -> SweepReport:
        report = SweepReport()
        token = None

        if self.cache is not None:
            try:
                token = await self.cache.acquire_lock(SWEEP_LOCK_NAME, self.lock_ttl)
            except RedisError as e:
                logger.warning(f"Sweep lock unavailable, running unguarded: {e}")
            else:
                if token is None:
                    logger.info("Another reminder sweep is running; skipping")
                    report.locked_out = True
                    return report

        try:
            now = self.clock()
            donors = await self.user_store.find_lapsed_donors(now - self.lapse)
            for donor in donors:
                report.considered += 1
                await self._remind(donor, now, report)
        finally:
            if token is not None:
                await self.cache.release_lock(SWEEP_LOCK_NAME, token)

        logger.info(
            f"Reminder sweep: {report.sent} sent, {report.failed} failed, "
            f"{report.skipped} skipped of {report.considered}"
        )
        if self.cache is not None:
            await self.cache.set(LAST_SWEEP_KEY, {"finished_at": self.clock().isoformat(), **report.to_dict()},
                                 LAST_SWEEP_TTL_SECONDS)
        return report

    async def _remind(self, donor: User, now: datetime, report: SweepReport) -> None:
        phone = normalize_phone_number(donor.phone_number)
        if not phone or donor.blood_type is None:
            report.skipped += 1
            return

        if donor.last_reminder_sent_at is not None and now - _aware(donor.last_reminder_sent_at) < self.cooldown:
            report.skipped += 1
            return

        if not await self._claim(donor):
            report.skipped += 1
            return

        result = await self.dispatcher.send_one(
            phone,
            templates.donation_reminder_message(donor.blood_type),
            kind="reminder"
        )
        if not result.success:
            report.failed += 1
            logger.warning(f"Reminder to {mask_phone_number(phone)} failed: {result.error}")
            return

        report.sent += 1
        try:
            await self.user_store.mark_reminded(donor.id, now)
        except StoreError as e:
            # The cooldown key still guards the next sweep
            logger.error(f"Could not record reminder for donor {donor.id}: {e}")

    async def _claim(self, donor: User) -> bool:
        if self.cache is None:
            return True
        try:
            return await self.cache.set_if_absent(
                f"reminder:{donor.id}",
                int(self.cooldown.total_seconds())
            )
        except RedisError as e:
            logger.warning(f"Reminder cooldown check failed for donor {donor.id}: {e}")
            return True


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
