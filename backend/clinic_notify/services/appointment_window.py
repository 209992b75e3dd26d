"""
Timezone-correct appointment lookup for reminder windows.

Appointments store a wall-clock ``date`` and ``time`` in the organization's
timezone, with no offset. A reminder window is a pair of absolute instants.
To select appointments in SQL, the window instants are converted into the
organization's local wall-clock and compared against ``(date, time)``
lexicographically, so the conversion happens in the query rather than by
loading the whole calendar.

DST: around a transition the local bounds are widened to cover both
offsets and the selected rows are re-checked against the absolute window.
Ambiguous wall-clock times resolve to their first occurrence (``fold=0``).
Wall-clock times inside a spring-forward gap take the offset in force before
the transition, so 02:30 on a 02:00 -> 03:00 day is reminded as 03:30.
"""

import logging
from datetime import date as date_type
from datetime import datetime, time as time_type, timedelta, timezone, tzinfo
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import Select, and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_notify.models.appointment import Appointment, REMINDABLE_STATUSES

logger = logging.getLogger(__name__)

# Longer than any DST shift; the offset this far before a window is what
# places skipped wall-clock times
_GAP_LOOKBEHIND = timedelta(hours=3)


def resolve_timezone(name: str | None) -> tzinfo:
    """Return the zone for an IANA name; unset or invalid names give UTC."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("resolve_timezone: invalid timezone %r, falling back to UTC", name)
        return timezone.utc


def local_window_bounds(
    window_start: datetime,
    window_end: datetime,
    tz: tzinfo,
) -> tuple[datetime, datetime]:
    """
    Naive local wall-clock bounds covering ``[window_start, window_end]``.

    The window is short, so the zone's UTC offset inside it is one of the
    offsets at its two ends. Applying the smaller offset to the start and
    the larger one to the end gives bounds that cover every local time in
    the window even across a DST change. The offset shortly before the
    window is included too, so that wall-clock times skipped by a
    spring-forward change, which ``appointment_instant`` places with the
    earlier offset, fall inside the bounds.
    """
    offsets = (
        (window_start - _GAP_LOOKBEHIND).astimezone(tz).utcoffset(),
        window_start.astimezone(tz).utcoffset(),
        window_end.astimezone(tz).utcoffset(),
    )
    start_utc = window_start.astimezone(timezone.utc).replace(tzinfo=None)
    end_utc = window_end.astimezone(timezone.utc).replace(tzinfo=None)
    return start_utc + min(offsets), end_utc + max(offsets)


def appointment_instant(appt_date: date_type, appt_time: time_type, tz: tzinfo) -> datetime:
    """The absolute (UTC) instant of a local appointment date and time."""
    local = datetime.combine(appt_date, appt_time.replace(tzinfo=None)).replace(tzinfo=tz)
    return local.astimezone(timezone.utc)


def build_window_query(
    org_id: UUID,
    tz: tzinfo,
    window_start: datetime,
    window_end: datetime,
) -> Select:
    """
    SELECT remindable appointments of one organization whose local
    ``(date, time)`` lies within the window.
    """
    start_local, end_local = local_window_bounds(window_start, window_end, tz)
    start_date, start_time = start_local.date(), start_local.time()
    end_date, end_time = end_local.date(), end_local.time()

    return (
        select(Appointment)
        .where(
            Appointment.org_id == org_id,
            Appointment.deleted_at.is_(None),
            Appointment.status.in_(REMINDABLE_STATUSES),
            Appointment.date.between(start_date, end_date),
            or_(
                Appointment.date > start_date,
                and_(Appointment.date == start_date, Appointment.time >= start_time),
            ),
            or_(
                Appointment.date < end_date,
                and_(Appointment.date == end_date, Appointment.time <= end_time),
            ),
        )
        .order_by(Appointment.date, Appointment.time)
    )


async def find_appointments_in_window(
    db: AsyncSession,
    org_id: UUID,
    tz: tzinfo,
    window_start: datetime,
    window_end: datetime,
) -> list[Appointment]:
    result = await db.execute(build_window_query(org_id, tz, window_start, window_end))
    appointments = result.scalars().all()

    matched = [
        appt for appt in appointments
        if window_start <= appointment_instant(appt.date, appt.time, tz) <= window_end
    ]
    if len(matched) != len(appointments):
        logger.debug(
            "find_appointments_in_window: dropped %d rows outside the absolute window for org %s",
            len(appointments) - len(matched), org_id,
        )
    return matched
