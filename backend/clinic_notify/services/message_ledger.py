"""
Message ledger: durable record of every outbound notification.

Each write commits immediately. A row is committed as ``pending`` before the
gateway call so that a crash mid-call still leaves evidence of the attempt;
the reminder de-duplication treats ``pending`` as already attempted.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_notify.exceptions import EntityNotFoundError
from clinic_notify.models.message import Message, MessageStatus, MessageType
from clinic_notify.schemas.message import MessageListResponse, MessageResponse

logger = logging.getLogger(__name__)

# Reminder rows in these states block another attempt for the same offset
_ACTIVE_REMINDER_STATUSES = [MessageStatus.SENT.value, MessageStatus.PENDING.value]

# The scheduler never retries a failed reminder on its own; resend does that
ATTEMPTED_REMINDER_STATUSES = [*_ACTIVE_REMINDER_STATUSES, MessageStatus.FAILED.value]


# ---------------------------------------------------------------------------
# 1. create_message
# ---------------------------------------------------------------------------

async def create_message(
    db: AsyncSession,
    org_id: UUID,
    patient_id: UUID,
    message_type: MessageType,
    content: str,
    metadata: dict[str, Any] | None = None,
    appointment_id: UUID | None = None,
    timing_in_hours: int | None = None,
) -> Message:
    """Insert a ``pending`` message and commit it."""
    message = Message(
        id=uuid4(),
        org_id=org_id,
        patient_id=patient_id,
        type=MessageType(message_type).value,
        content=content,
        status=MessageStatus.PENDING.value,
        meta=metadata,
        appointment_id=appointment_id,
        timing_in_hours=timing_in_hours,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    await db.commit()

    logger.info(
        "create_message: %s message %s created for patient %s (org %s)",
        message.type, message.id, patient_id, org_id,
    )
    return message


# ---------------------------------------------------------------------------
# 2. update_message_status
# ---------------------------------------------------------------------------

async def update_message_status(
    db: AsyncSession,
    message_id: UUID,
    org_id: UUID,
    status: MessageStatus,
    error: str | None = None,
) -> Message:
    """
    Record a delivery outcome.

    ``sent_at`` is stamped only when the new status is ``sent``. A previous
    error is kept unless a new one is given. There is no terminal state, so
    resends can move a failed message again. Content is never touched.
    """
    message = await get_message(db, message_id, org_id)

    status = MessageStatus(status)
    message.status = status.value
    if status is MessageStatus.SENT:
        message.sent_at = datetime.now(timezone.utc)
    if error:
        message.error = error

    await db.commit()

    logger.info("update_message_status: message %s is now %s", message_id, status.value)
    return message


# ---------------------------------------------------------------------------
# 3. find_recent_reminder
# ---------------------------------------------------------------------------

async def find_recent_reminder(
    db: AsyncSession,
    org_id: UUID,
    appointment_id: UUID,
    timing_in_hours: int,
    lookback: timedelta,
    now: datetime | None = None,
    statuses: list[str] | None = None,
) -> bool:
    """
    True if a sent or pending reminder for this appointment and offset was
    created within ``lookback`` of ``now``.

    ``statuses`` widens or narrows the states that count, e.g.
    ``ATTEMPTED_REMINDER_STATUSES`` to also treat failed rows as attempted.
    """
    since = (now or datetime.now(timezone.utc)) - lookback
    stmt = (
        select(Message.id)
        .where(
            Message.org_id == org_id,
            Message.type == MessageType.APPOINTMENT_REMINDER.value,
            Message.appointment_id == appointment_id,
            Message.timing_in_hours == timing_in_hours,
            Message.status.in_(statuses or _ACTIVE_REMINDER_STATUSES),
            Message.created_at >= since,
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# 4. Read helpers
# ---------------------------------------------------------------------------

async def get_message(db: AsyncSession, message_id: UUID, org_id: UUID) -> Message:
    stmt = select(Message).where(Message.id == message_id, Message.org_id == org_id)
    result = await db.execute(stmt)
    message = result.scalar_one_or_none()
    if message is None:
        raise EntityNotFoundError("Message", message_id, org_id)
    return message


async def list_messages(
    db: AsyncSession,
    org_id: UUID,
    patient_id: UUID | None = None,
    message_type: MessageType | None = None,
    status: MessageStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> MessageListResponse:
    """Paginated ledger listing for one organization, newest first."""
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    filters = [Message.org_id == org_id]
    if patient_id:
        filters.append(Message.patient_id == patient_id)
    if message_type:
        filters.append(Message.type == MessageType(message_type).value)
    if status:
        filters.append(Message.status == MessageStatus(status).value)

    count_result = await db.execute(
        select(func.count()).select_from(Message).where(*filters)
    )
    total = count_result.scalar_one()

    rows_result = await db.execute(
        select(Message)
        .where(*filters)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    messages = rows_result.scalars().all()

    return MessageListResponse(
        data=[MessageResponse.model_validate(m) for m in messages],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


async def get_patient_messages(
    db: AsyncSession,
    patient_id: UUID,
    org_id: UUID,
) -> list[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.patient_id == patient_id, Message.org_id == org_id)
        .order_by(Message.created_at.desc())
    )
    return list(result.scalars().all())
