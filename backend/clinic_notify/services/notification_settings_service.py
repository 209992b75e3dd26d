"""
Per-organization notification settings.

Each organization has exactly one settings row, created with defaults the
first time it is read. The scheduler loads the typed ``NotificationConfig``
once per organization per tick and hands it to every reminder dispatch.
"""

import copy
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_notify.models.notification_settings import NotificationSettings
from clinic_notify.schemas.notification_settings import (
    NotificationConfig,
    NotificationSettingsUpdate,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_REMINDER_OFFSETS = [
    {"enabled": True, "timingInHours": 24},
    {"enabled": True, "timingInHours": 1},
]

DEFAULT_MESSAGE_TEMPLATES = {
    "medical_history": (
        "Hello {{patientName}}, please fill out your medical history form: "
        "{{medicalHistoryLink}}"
    ),
    "payment_receipt": (
        "Hello {{patientName}}, thank you for your payment of {{amount}}. "
        "Your remaining balance is {{remainingBalance}}."
    ),
    "appointment_reminder": (
        "Hello {{patientName}}, this is a reminder for your appointment on "
        "{{appointmentDate}} at {{appointmentTime}} with {{doctorName}} at "
        "{{clinicLocation}}."
    ),
    "follow_up": (
        "Hello {{patientName}}, this is a reminder for your follow-up "
        "appointment. Reason: {{followUpReason}}. Please contact us at "
        "{{clinicLocation}}."
    ),
    "payment_overdue": (
        "Hello {{patientName}}, you have an outstanding balance of {{amountDue}} "
        "for completed treatments. Please contact us at {{clinicLocation}} to "
        "arrange payment."
    ),
}

DEFAULT_TOGGLES = {
    "medical_history": True,
    "payment_receipt": True,
    "follow_up": True,
    "payment_overdue": True,
}


def _to_config(row: NotificationSettings) -> NotificationConfig:
    return NotificationConfig(
        org_id=row.org_id,
        appointment_reminders=row.appointment_reminders or [],
        message_templates=row.message_templates,
        notification_toggles=row.notification_toggles or DEFAULT_TOGGLES,
    )


async def _select_row(db: AsyncSession, org_id: UUID) -> NotificationSettings | None:
    result = await db.execute(
        select(NotificationSettings).where(NotificationSettings.org_id == org_id)
    )
    return result.scalar_one_or_none()


async def _get_or_create_row(db: AsyncSession, org_id: UUID) -> NotificationSettings:
    row = await _select_row(db, org_id)

    if row is None:
        row = NotificationSettings(
            org_id=org_id,
            appointment_reminders=copy.deepcopy(DEFAULT_REMINDER_OFFSETS),
            message_templates=dict(DEFAULT_MESSAGE_TEMPLATES),
            notification_toggles=dict(DEFAULT_TOGGLES),
        )
        db.add(row)
        try:
            await db.commit()
            logger.info("notification_settings: created defaults for org %s", org_id)
        except IntegrityError:
            # Another worker inserted the row first
            await db.rollback()
            row = await _select_row(db, org_id)
            if row is None:
                raise

    if row.notification_toggles is None:
        row.notification_toggles = dict(DEFAULT_TOGGLES)
        await db.commit()
        logger.info("notification_settings: backfilled toggles for org %s", org_id)

    return row


# ---------------------------------------------------------------------------
# 1. get_or_create
# ---------------------------------------------------------------------------

async def get_or_create(db: AsyncSession, org_id: UUID) -> NotificationConfig:
    """Return the organization's settings, persisting defaults if none exist."""
    row = await _get_or_create_row(db, org_id)
    return _to_config(row)


# ---------------------------------------------------------------------------
# 2. update
# ---------------------------------------------------------------------------

async def update(
    db: AsyncSession,
    org_id: UUID,
    payload: NotificationSettingsUpdate | dict,
) -> NotificationConfig:
    """
    Replace the organization's offsets and templates.

    Raises pydantic.ValidationError for an incomplete payload (missing
    templates, negative offsets) before anything is written. Toggles are
    only replaced when supplied.
    """
    if not isinstance(payload, NotificationSettingsUpdate):
        payload = NotificationSettingsUpdate.model_validate(payload)

    row = await _get_or_create_row(db, org_id)

    row.appointment_reminders = [
        offset.model_dump(by_alias=True) for offset in payload.appointment_reminders
    ]
    row.message_templates = payload.message_templates.model_dump()
    if payload.notification_toggles is not None:
        row.notification_toggles = payload.notification_toggles.model_dump()

    await db.commit()

    logger.info(
        "notification_settings: updated org %s (%d reminder offsets)",
        org_id, len(row.appointment_reminders),
    )
    return _to_config(row)
