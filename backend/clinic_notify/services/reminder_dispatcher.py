"""
Reminder dispatcher: renders and sends patient notifications.

Every dispatch follows the same path:

    load entities (org-scoped) -> load settings + organization
    -> build variables -> render -> ledger row (pending, committed)
    -> gateway -> ledger status update

Missing entities raise ``EntityNotFoundError``. Gateway problems never
raise; they end up as a ``failed`` message row with the gateway's error.
"""

import logging
from datetime import date, time
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_notify.config import get_settings
from clinic_notify.exceptions import EntityNotFoundError
from clinic_notify.models.appointment import Appointment
from clinic_notify.models.message import Message, MessageStatus, MessageType
from clinic_notify.models.organization import Organization
from clinic_notify.models.patient import Patient
from clinic_notify.schemas.notification_settings import NotificationConfig
from clinic_notify.services import gateway_client, message_ledger, notification_settings_service
from clinic_notify.services.template_renderer import render

logger = logging.getLogger(__name__)

DEFAULT_DOCTOR_NAME = "the doctor"
DEFAULT_FOLLOW_UP_REASON = "Follow-up required"

_CENTS = Decimal("0.01")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_money(value) -> str:
    """Format an amount with exactly two decimals (half-up)."""
    return str(Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP))


def format_appointment_date(value: date) -> str:
    return value.isoformat()


def format_appointment_time(value: time) -> str:
    return value.strftime("%H:%M")


def build_medical_history_link(patient_id: UUID, org_id: UUID) -> str:
    base = get_settings().FRONTEND_URL.rstrip("/")
    return f"{base}/medical-history/{patient_id}?orgId={org_id}"


async def _get_patient(db: AsyncSession, patient_id: UUID, org_id: UUID) -> Patient:
    result = await db.execute(
        select(Patient).where(
            Patient.id == patient_id,
            Patient.org_id == org_id,
            Patient.deleted_at.is_(None),
        )
    )
    patient = result.scalar_one_or_none()
    if patient is None:
        raise EntityNotFoundError("Patient", patient_id, org_id)
    return patient


async def _get_organization(db: AsyncSession, org_id: UUID) -> Organization:
    org = await db.get(Organization, org_id)
    if org is None:
        raise EntityNotFoundError("Organization", org_id)
    return org


async def _get_appointment(db: AsyncSession, appointment_id: UUID, org_id: UUID) -> Appointment:
    result = await db.execute(
        select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.org_id == org_id,
        )
    )
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise EntityNotFoundError("Appointment", appointment_id, org_id)
    if appointment.patient is None:
        raise EntityNotFoundError("Patient", appointment.patient_id, org_id)
    return appointment


def _clinic_variables(org: Organization) -> dict[str, str]:
    return {
        "clinicName": org.name,
        "clinicLocation": org.location or org.name,
    }


async def _load_context(
    db: AsyncSession,
    org_id: UUID,
    config: NotificationConfig | None = None,
) -> tuple[NotificationConfig, Organization]:
    if config is None:
        config = await notification_settings_service.get_or_create(db, org_id)
    org = await _get_organization(db, org_id)
    return config, org


async def _deliver(
    db: AsyncSession,
    org_id: UUID,
    patient: Patient,
    message_type: MessageType,
    content: str,
    metadata: dict,
    appointment_id: UUID | None = None,
    timing_in_hours: int | None = None,
) -> Message:
    message = await message_ledger.create_message(
        db,
        org_id=org_id,
        patient_id=patient.id,
        message_type=message_type,
        content=content,
        metadata=metadata,
        appointment_id=appointment_id,
        timing_in_hours=timing_in_hours,
    )

    result = await gateway_client.send_message(db, org_id, patient.mobile_number, content)

    status = MessageStatus.SENT if result["success"] else MessageStatus.FAILED
    message = await message_ledger.update_message_status(
        db, message.id, org_id, status, result.get("error"),
    )

    if result["success"]:
        logger.info("dispatch: %s sent to patient %s (message %s)", message_type.value, patient.id, message.id)
    else:
        logger.error(
            "dispatch: %s to patient %s failed: %s (message %s)",
            message_type.value, patient.id, result.get("error"), message.id,
        )
    return message


def _toggled_off(config: NotificationConfig, message_type: MessageType, patient_id: UUID) -> bool:
    if config.notification_toggles.is_enabled(message_type):
        return False
    logger.info(
        "dispatch: %s notifications disabled for org %s, skipping patient %s",
        message_type.value, config.org_id, patient_id,
    )
    return True


# ---------------------------------------------------------------------------
# 1. dispatch_medical_history_link
# ---------------------------------------------------------------------------

async def dispatch_medical_history_link(
    db: AsyncSession,
    patient_id: UUID,
    org_id: UUID,
) -> Message | None:
    """Send the patient a link to the medical history form."""
    patient = await _get_patient(db, patient_id, org_id)
    config, org = await _load_context(db, org_id)
    if _toggled_off(config, MessageType.MEDICAL_HISTORY, patient_id):
        return None

    link = build_medical_history_link(patient_id, org_id)
    content = render(
        config.message_templates.for_type(MessageType.MEDICAL_HISTORY),
        {
            "patientName": patient.full_name,
            "medicalHistoryLink": link,
            **_clinic_variables(org),
        },
    )
    return await _deliver(
        db, org_id, patient, MessageType.MEDICAL_HISTORY, content,
        {"medicalHistoryLink": link},
    )


# ---------------------------------------------------------------------------
# 2. dispatch_payment_receipt
# ---------------------------------------------------------------------------

async def dispatch_payment_receipt(
    db: AsyncSession,
    patient_id: UUID,
    payment_id: UUID,
    amount: Decimal | float,
    remaining_balance: Decimal | float,
    org_id: UUID,
) -> Message | None:
    patient = await _get_patient(db, patient_id, org_id)
    config, org = await _load_context(db, org_id)
    if _toggled_off(config, MessageType.PAYMENT_RECEIPT, patient_id):
        return None

    content = render(
        config.message_templates.for_type(MessageType.PAYMENT_RECEIPT),
        {
            "patientName": patient.full_name,
            "amount": format_money(amount),
            "remainingBalance": format_money(remaining_balance),
            **_clinic_variables(org),
        },
    )
    return await _deliver(
        db, org_id, patient, MessageType.PAYMENT_RECEIPT, content,
        {
            "paymentId": str(payment_id),
            "amount": float(amount),
            "remainingBalance": float(remaining_balance),
        },
    )


# ---------------------------------------------------------------------------
# 3. dispatch_appointment_reminder
# ---------------------------------------------------------------------------

async def dispatch_appointment_reminder(
    db: AsyncSession,
    appointment_id: UUID,
    org_id: UUID,
    timing_in_hours: int | None = None,
    config: NotificationConfig | None = None,
) -> Message:
    """
    Send an appointment reminder.

    ``timing_in_hours`` identifies the reminder offset and is what the
    scheduler de-duplicates on. ``config`` lets the scheduler reuse the
    settings it loaded once for the tick.
    """
    appointment = await _get_appointment(db, appointment_id, org_id)
    config, org = await _load_context(db, org_id, config)

    patient = appointment.patient
    appointment_date = format_appointment_date(appointment.date)
    appointment_time = format_appointment_time(appointment.time)
    doctor_name = appointment.doctor.name if appointment.doctor else DEFAULT_DOCTOR_NAME

    content = render(
        config.message_templates.for_type(MessageType.APPOINTMENT_REMINDER),
        {
            "patientName": patient.full_name,
            "appointmentDate": appointment_date,
            "appointmentTime": appointment_time,
            "doctorName": doctor_name,
            **_clinic_variables(org),
        },
    )
    return await _deliver(
        db, org_id, patient, MessageType.APPOINTMENT_REMINDER, content,
        {
            "appointmentId": str(appointment_id),
            "appointmentDate": appointment_date,
            "appointmentTime": appointment_time,
            "timingInHours": timing_in_hours,
        },
        appointment_id=appointment_id,
        timing_in_hours=timing_in_hours,
    )


# ---------------------------------------------------------------------------
# 4. dispatch_follow_up
# ---------------------------------------------------------------------------

async def dispatch_follow_up(
    db: AsyncSession,
    patient_id: UUID,
    org_id: UUID,
) -> Message | None:
    patient = await _get_patient(db, patient_id, org_id)
    config, org = await _load_context(db, org_id)
    if _toggled_off(config, MessageType.FOLLOW_UP, patient_id):
        return None

    content = render(
        config.message_templates.for_type(MessageType.FOLLOW_UP),
        {
            "patientName": patient.full_name,
            "followUpReason": patient.follow_up_reason or DEFAULT_FOLLOW_UP_REASON,
            **_clinic_variables(org),
        },
    )
    return await _deliver(
        db, org_id, patient, MessageType.FOLLOW_UP, content,
        {
            "followUpReason": patient.follow_up_reason,
            "followUpDate": patient.follow_up_date.isoformat() if patient.follow_up_date else None,
        },
    )


# ---------------------------------------------------------------------------
# 5. dispatch_payment_overdue
# ---------------------------------------------------------------------------

async def dispatch_payment_overdue(
    db: AsyncSession,
    patient_id: UUID,
    amount_due: Decimal | float,
    org_id: UUID,
) -> Message | None:
    patient = await _get_patient(db, patient_id, org_id)
    config, org = await _load_context(db, org_id)
    if _toggled_off(config, MessageType.PAYMENT_OVERDUE, patient_id):
        return None

    content = render(
        config.message_templates.for_type(MessageType.PAYMENT_OVERDUE),
        {
            "patientName": patient.full_name,
            "amountDue": format_money(amount_due),
            **_clinic_variables(org),
        },
    )
    return await _deliver(
        db, org_id, patient, MessageType.PAYMENT_OVERDUE, content,
        {"amountDue": float(amount_due)},
    )


# ---------------------------------------------------------------------------
# 6. resend_message
# ---------------------------------------------------------------------------

async def resend_message(db: AsyncSession, message_id: UUID, org_id: UUID) -> Message:
    """
    Re-send a stored message.

    The stored content goes out verbatim and only the status, ``sent_at``
    and error are updated. Toggles are not consulted.
    """
    message = await message_ledger.get_message(db, message_id, org_id)
    patient = await _get_patient(db, message.patient_id, org_id)

    result = await gateway_client.send_message(db, org_id, patient.mobile_number, message.content)

    status = MessageStatus.SENT if result["success"] else MessageStatus.FAILED
    message = await message_ledger.update_message_status(db, message_id, org_id, status, result.get("error"))

    if result["success"]:
        logger.info("resend_message: message %s resent", message_id)
    else:
        logger.error("resend_message: message %s failed again: %s", message_id, result.get("error"))
    return message
