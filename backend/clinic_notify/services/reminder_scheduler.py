"""
Periodic appointment reminder scheduler.

Every tick walks all active organizations and, for each enabled reminder
offset, looks for appointments starting ``timingInHours`` from now (plus or
minus the match window). Matches that have no recent sent/pending reminder
for the same offset are handed to the dispatcher.

Failure isolation:
  - one appointment failing does not stop the organization's batch
  - one organization failing does not stop the tick
  - one tick failing does not stop the loop

Ticks never overlap. Inside a process an asyncio lock rejects a tick that
starts while the previous one is still running; across processes a
PostgreSQL advisory lock lets only one worker run a tick.
"""

import asyncio
import contextvars
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_notify.config import get_settings
from clinic_notify.models.message import MessageStatus
from clinic_notify.models.organization import Organization
from clinic_notify.schemas.notification_settings import NotificationConfig
from clinic_notify.services import (
    appointment_window,
    message_ledger,
    notification_settings_service,
    reminder_dispatcher,
)

logger = logging.getLogger(__name__)

# Current tick id, stamped on log records by the host's logging filter
tick_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("tick_id", default="-")


@dataclass
class TickSummary:
    tick_id: str
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    organizations: int = 0
    organizations_failed: int = 0
    matched: int = 0
    duplicates: int = 0
    sent: int = 0
    failed: int = 0
    errors: int = 0


async def load_active_organizations(db: AsyncSession) -> list[tuple[UUID, str | None]]:
    """(id, timezone) of every active organization."""
    result = await db.execute(
        select(Organization.id, Organization.timezone)
        .where(Organization.is_active.is_(True))
        .order_by(Organization.created_at)
    )
    return [(row[0], row[1]) for row in result.all()]


class ReminderScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        *,
        interval_seconds: int | None = None,
        match_window_minutes: int | None = None,
        lookback_minutes: int | None = None,
        org_concurrency: int | None = None,
        use_advisory_lock: bool | None = None,
    ):
        settings = get_settings()
        if session_factory is None:
            from clinic_notify.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal

        self._session_factory = session_factory
        self._interval = interval_seconds or settings.REMINDER_TICK_INTERVAL_SECONDS
        self._match_window = timedelta(
            minutes=match_window_minutes or settings.REMINDER_MATCH_WINDOW_MINUTES
        )
        self._lookback = timedelta(
            minutes=lookback_minutes or settings.REMINDER_DEDUP_LOOKBACK_MINUTES
        )
        self._org_concurrency = max(org_concurrency or settings.REMINDER_ORG_CONCURRENCY, 1)
        if use_advisory_lock is None:
            use_advisory_lock = settings.DATABASE_URL.startswith("postgresql")
        self._use_advisory_lock = use_advisory_lock
        self._advisory_lock_id = settings.REMINDER_ADVISORY_LOCK_ID

        self._tick_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._last_summary: TickSummary | None = None
        self._last_ok: float | None = None
        self._consecutive_errors = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_summary(self) -> TickSummary | None:
        return self._last_summary

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("reminder_scheduler: stopped")
        self._task = None

    def health(self) -> dict:
        status = "unknown"
        if self._last_ok:
            age = time.time() - self._last_ok
            status = "ok" if age < 2 * self._interval else f"stale ({int(age)}s ago)"
        return {
            "running": self.is_running,
            "status": status,
            "consecutive_errors": self._consecutive_errors,
            "last_tick": asdict(self._last_summary) if self._last_summary else None,
        }

    async def _loop(self) -> None:
        logger.info("reminder_scheduler: started (every %ss)", self._interval)
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_tick()
                self._consecutive_errors = 0
                self._last_ok = time.time()
            except Exception:
                self._consecutive_errors += 1
                logger.exception(
                    "reminder_scheduler: tick failed (%d consecutive)",
                    self._consecutive_errors,
                )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def run_tick(self, now: datetime | None = None) -> TickSummary | None:
        """
        Run one scheduling pass.

        Returns None without doing anything if a tick is already running in
        this process. Exceptions escaping here (e.g. the organization list
        cannot be loaded) are handled by the loop.
        """
        if self._tick_lock.locked():
            logger.warning("reminder_scheduler: previous tick still running, skipping")
            return None

        async with self._tick_lock:
            token = tick_id_ctx.set(uuid.uuid4().hex[:8])
            try:
                summary = TickSummary(
                    tick_id=tick_id_ctx.get(),
                    started_at=now or datetime.now(timezone.utc),
                )
                if self._use_advisory_lock:
                    await self._run_with_advisory_lock(summary)
                else:
                    await self._run_organizations(summary)

                summary.finished_at = datetime.now(timezone.utc)
                self._last_summary = summary
                if summary.matched or summary.organizations_failed:
                    logger.info(
                        "reminder_scheduler: tick done (orgs=%d failed_orgs=%d matched=%d "
                        "duplicates=%d sent=%d failed=%d errors=%d)",
                        summary.organizations, summary.organizations_failed, summary.matched,
                        summary.duplicates, summary.sent, summary.failed, summary.errors,
                    )
                return summary
            finally:
                tick_id_ctx.reset(token)

    async def _run_with_advisory_lock(self, summary: TickSummary) -> None:
        async with self._session_factory() as lock_db:
            lock_result = await lock_db.execute(
                text("SELECT pg_try_advisory_lock(:lock_id)"),
                {"lock_id": self._advisory_lock_id},
            )
            if not lock_result.scalar_one():
                # Another worker is running this tick
                summary.skipped = True
                logger.info("reminder_scheduler: advisory lock held elsewhere, skipping tick")
                return

            try:
                await self._run_organizations(summary)
            finally:
                await lock_db.execute(
                    text("SELECT pg_advisory_unlock(:lock_id)"),
                    {"lock_id": self._advisory_lock_id},
                )
                await lock_db.commit()

    async def _run_organizations(self, summary: TickSummary) -> None:
        async with self._session_factory() as db:
            organizations = await load_active_organizations(db)
        summary.organizations = len(organizations)

        semaphore = asyncio.Semaphore(self._org_concurrency)

        async def _guarded(org_id: UUID, tz_name: str | None) -> None:
            async with semaphore:
                await self._process_organization(org_id, tz_name, summary)

        await asyncio.gather(*(_guarded(org_id, tz_name) for org_id, tz_name in organizations))

    async def _process_organization(
        self,
        org_id: UUID,
        tz_name: str | None,
        summary: TickSummary,
    ) -> None:
        try:
            async with self._session_factory() as db:
                config = await notification_settings_service.get_or_create(db, org_id)
                offsets = config.enabled_offsets()
                if not offsets:
                    return

                tz = appointment_window.resolve_timezone(tz_name)
                for offset in offsets:
                    await self._process_offset(db, org_id, tz, config, offset.timing_in_hours, summary)
        except Exception:
            summary.organizations_failed += 1
            logger.exception("reminder_scheduler: organization %s failed", org_id)

    async def _process_offset(
        self,
        db: AsyncSession,
        org_id: UUID,
        tz: tzinfo,
        config: NotificationConfig,
        timing_in_hours: int,
        summary: TickSummary,
    ) -> None:
        now = summary.started_at
        target = now + timedelta(hours=timing_in_hours)
        appointments = await appointment_window.find_appointments_in_window(
            db, org_id, tz, target - self._match_window, target + self._match_window,
        )
        # Ids are read up front; a rollback below expires loaded instances
        appointment_ids = [appointment.id for appointment in appointments]
        summary.matched += len(appointment_ids)

        for appointment_id in appointment_ids:
            try:
                if await message_ledger.find_recent_reminder(
                    db, org_id, appointment_id, timing_in_hours, self._lookback, now=now,
                    statuses=message_ledger.ATTEMPTED_REMINDER_STATUSES,
                ):
                    summary.duplicates += 1
                    logger.debug(
                        "reminder_scheduler: %sh reminder for appointment %s already attempted",
                        timing_in_hours, appointment_id,
                    )
                    continue

                message = await reminder_dispatcher.dispatch_appointment_reminder(
                    db, appointment_id, org_id, timing_in_hours, config=config,
                )
                if message.status == MessageStatus.SENT.value:
                    summary.sent += 1
                else:
                    summary.failed += 1
            except Exception:
                summary.errors += 1
                logger.exception(
                    "reminder_scheduler: %sh reminder for appointment %s failed",
                    timing_in_hours, appointment_id,
                )
                await db.rollback()
