"""
Tests for the reminder dispatcher.

Entity loaders, settings, the ledger and the gateway are patched; the
dispatcher's rendering and ledger flow run for real.
"""
import pytest
from datetime import date, time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from clinic_notify.exceptions import EntityNotFoundError
from clinic_notify.models.message import MessageStatus, MessageType
from clinic_notify.services import (
    gateway_client,
    message_ledger,
    notification_settings_service,
    reminder_dispatcher,
)
from notify_factories import make_appointment, make_config, make_doctor, make_org, make_patient

SENT = {"success": True, "error": None}


@pytest.fixture
def env(ledger):
    org = make_org()
    patient = make_patient(org.id)
    config = make_config(org.id)
    send = AsyncMock(return_value=SENT)
    get_patient = AsyncMock(return_value=patient)
    get_appointment = AsyncMock()
    get_settings = AsyncMock(return_value=config)

    with patch.object(reminder_dispatcher, "_get_patient", get_patient), \
         patch.object(reminder_dispatcher, "_get_organization", AsyncMock(return_value=org)), \
         patch.object(reminder_dispatcher, "_get_appointment", get_appointment), \
         patch.object(notification_settings_service, "get_or_create", get_settings), \
         patch.object(message_ledger, "create_message", ledger.create_message), \
         patch.object(message_ledger, "update_message_status", ledger.update_message_status), \
         patch.object(message_ledger, "get_message", ledger.get_message), \
         patch.object(gateway_client, "send_message", send):
        yield SimpleNamespace(
            db=AsyncMock(), org=org, patient=patient, config=config, send=send,
            ledger=ledger, get_patient=get_patient, get_appointment=get_appointment,
            get_settings=get_settings,
        )


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value, expected", [
    (150, "150.00"),
    (49.999, "50.00"),
    (10.005, "10.01"),
    (Decimal("3.1"), "3.10"),
    (0, "0.00"),
    (-2.5, "-2.50"),
])
def test_format_money_two_decimals(value, expected):
    assert reminder_dispatcher.format_money(value) == expected


def test_medical_history_link_uses_frontend_url(monkeypatch):
    monkeypatch.setenv("FRONTEND_URL", "https://app.clinic.example/")
    patient_id, org_id = uuid4(), uuid4()
    link = reminder_dispatcher.build_medical_history_link(patient_id, org_id)
    assert link == f"https://app.clinic.example/medical-history/{patient_id}?orgId={org_id}"


# ---------------------------------------------------------------------------
# Manual dispatches
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_dispatch_medical_history_link(env):
    message = await reminder_dispatcher.dispatch_medical_history_link(env.db, env.patient.id, env.org.id)

    link = f"http://localhost:3001/medical-history/{env.patient.id}?orgId={env.org.id}"
    assert message.content == f"Hello Maya Khoury, please fill out your medical history form: {link}"
    assert message.status == "sent"
    assert message.sent_at is not None
    assert message.meta == {"medicalHistoryLink": link}
    env.send.assert_awaited_once_with(env.db, env.org.id, "+961 81-261-368", message.content)


@pytest.mark.asyncio
async def test_dispatch_payment_receipt_formats_money(env):
    payment_id = uuid4()

    message = await reminder_dispatcher.dispatch_payment_receipt(
        env.db, env.patient.id, payment_id, 150, 49.999, env.org.id,
    )

    assert message.content == (
        "Hello Maya Khoury, thank you for your payment of 150.00. "
        "Your remaining balance is 50.00."
    )
    assert message.type == "payment_receipt"
    assert message.meta["paymentId"] == str(payment_id)


@pytest.mark.asyncio
async def test_dispatch_follow_up_default_reason(env):
    message = await reminder_dispatcher.dispatch_follow_up(env.db, env.patient.id, env.org.id)

    assert "Reason: Follow-up required." in message.content
    assert "Hamra Street, Beirut" in message.content
    assert message.meta == {"followUpReason": None, "followUpDate": None}


@pytest.mark.asyncio
async def test_dispatch_follow_up_uses_patient_reason(env):
    env.patient.follow_up_reason = "Crown fitting"
    env.patient.follow_up_date = date(2025, 4, 1)

    message = await reminder_dispatcher.dispatch_follow_up(env.db, env.patient.id, env.org.id)

    assert "Reason: Crown fitting." in message.content
    assert message.meta == {"followUpReason": "Crown fitting", "followUpDate": "2025-04-01"}


@pytest.mark.asyncio
async def test_dispatch_payment_overdue_uses_org_name_without_location(env):
    env.org.location = None

    message = await reminder_dispatcher.dispatch_payment_overdue(
        env.db, env.patient.id, Decimal("1200.5"), env.org.id,
    )

    assert message.content == (
        "Hello Maya Khoury, you have an outstanding balance of 1200.50 for completed "
        "treatments. Please contact us at Bright Smile Dental to arrange payment."
    )
    assert message.meta == {"amountDue": 1200.5}


@pytest.mark.asyncio
async def test_toggled_off_kind_is_skipped(env):
    env.get_settings.return_value = make_config(
        env.org.id,
        toggles={
            "medical_history": True, "payment_receipt": True,
            "follow_up": True, "payment_overdue": False,
        },
    )

    result = await reminder_dispatcher.dispatch_payment_overdue(env.db, env.patient.id, 20, env.org.id)

    assert result is None
    assert env.ledger.messages == {}
    env.send.assert_not_called()


@pytest.mark.asyncio
async def test_custom_template_renders_only_known_placeholders(env):
    templates = dict(env.config.message_templates.model_dump())
    templates["medical_history"] = "{{clinicName}} @ {{clinicLocation}}: {{unknown}}"
    env.get_settings.return_value = make_config(env.org.id, templates=templates)

    message = await reminder_dispatcher.dispatch_medical_history_link(env.db, env.patient.id, env.org.id)

    assert message.content == "Bright Smile Dental @ Hamra Street, Beirut: {{unknown}}"


# ---------------------------------------------------------------------------
# Appointment reminders
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_dispatch_appointment_reminder(env):
    doctor = make_doctor(env.org.id)
    appointment = make_appointment(env.org.id, env.patient, date(2025, 3, 10), time(9, 0), doctor=doctor)
    env.get_appointment.return_value = appointment

    message = await reminder_dispatcher.dispatch_appointment_reminder(
        env.db, appointment.id, env.org.id, 24, config=env.config,
    )

    assert message.content == (
        "Hello Maya Khoury, this is a reminder for your appointment on 2025-03-10 "
        "at 09:00 with Dr. Sami Haddad at Hamra Street, Beirut."
    )
    assert message.type == MessageType.APPOINTMENT_REMINDER.value
    assert message.status == "sent"
    assert message.appointment_id == appointment.id
    assert message.timing_in_hours == 24
    assert message.meta == {
        "appointmentId": str(appointment.id),
        "appointmentDate": "2025-03-10",
        "appointmentTime": "09:00",
        "timingInHours": 24,
    }
    # Settings passed in by the caller are reused
    env.get_settings.assert_not_called()


@pytest.mark.asyncio
async def test_dispatch_appointment_reminder_without_doctor(env):
    appointment = make_appointment(env.org.id, env.patient, date(2025, 3, 10), time(14, 30))
    env.get_appointment.return_value = appointment

    message = await reminder_dispatcher.dispatch_appointment_reminder(env.db, appointment.id, env.org.id, 1)

    assert "at 14:30 with the doctor at" in message.content
    env.get_settings.assert_awaited_once()


@pytest.mark.asyncio
async def test_misconfigured_gateway_records_failed_message(env):
    env.send.return_value = {"success": False, "error": "not configured"}

    message = await reminder_dispatcher.dispatch_medical_history_link(env.db, env.patient.id, env.org.id)

    assert message.status == MessageStatus.FAILED.value
    assert message.error == "not configured"
    assert message.sent_at is None
    assert len(env.ledger.messages) == 1


@pytest.mark.asyncio
async def test_missing_patient_raises_without_ledger_row(env):
    env.get_patient.side_effect = EntityNotFoundError("Patient", env.patient.id, env.org.id)

    with pytest.raises(EntityNotFoundError):
        await reminder_dispatcher.dispatch_follow_up(env.db, env.patient.id, env.org.id)

    assert env.ledger.messages == {}
    env.send.assert_not_called()


# ---------------------------------------------------------------------------
# Resend
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_resend_sends_stored_content_verbatim(env):
    original = await env.ledger.create_message(
        env.db, env.org.id, env.patient.id, MessageType.FOLLOW_UP, "Original text, {{notRendered}}",
    )
    await env.ledger.update_message_status(env.db, original.id, env.org.id, MessageStatus.FAILED, "timeout")
    # Template changes after the first attempt must not affect the resend
    templates = dict(env.config.message_templates.model_dump(), follow_up="Changed")
    env.get_settings.return_value = make_config(env.org.id, templates=templates)

    message = await reminder_dispatcher.resend_message(env.db, original.id, env.org.id)

    env.send.assert_awaited_once_with(
        env.db, env.org.id, "+961 81-261-368", "Original text, {{notRendered}}",
    )
    assert message.id == original.id
    assert message.content == "Original text, {{notRendered}}"
    assert message.status == "sent"
    assert len(env.ledger.messages) == 1


@pytest.mark.asyncio
async def test_resend_unknown_message_raises(env):
    with pytest.raises(EntityNotFoundError):
        await reminder_dispatcher.resend_message(env.db, uuid4(), env.org.id)
    env.send.assert_not_called()


@pytest.mark.asyncio
async def test_resend_message_from_another_org_raises(env):
    original = await env.ledger.create_message(
        env.db, env.org.id, env.patient.id, MessageType.FOLLOW_UP, "Hello",
    )

    with pytest.raises(EntityNotFoundError):
        await reminder_dispatcher.resend_message(env.db, original.id, uuid4())

    assert env.ledger.messages[original.id].status == "pending"
    env.send.assert_not_called()


# ---------------------------------------------------------------------------
# Org-scoped loaders
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_patient_not_found_raises():
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    db = MagicMock()
    db.execute = AsyncMock(return_value=result)

    with pytest.raises(EntityNotFoundError) as exc_info:
        await reminder_dispatcher._get_patient(db, uuid4(), uuid4())
    assert exc_info.value.entity == "Patient"


@pytest.mark.asyncio
async def test_get_organization_not_found_raises():
    db = MagicMock()
    db.get = AsyncMock(return_value=None)

    with pytest.raises(EntityNotFoundError):
        await reminder_dispatcher._get_organization(db, uuid4())
