"""
Tests for per-organization notification settings.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from clinic_notify.models.message import MessageType
from clinic_notify.models.notification_settings import NotificationSettings
from clinic_notify.services import notification_settings_service
from clinic_notify.services.notification_settings_service import (
    DEFAULT_MESSAGE_TEMPLATES,
    DEFAULT_TOGGLES,
)

ORG_ID = uuid4()


def _mock_db(*rows):
    db = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    results = []
    for row in rows:
        result = MagicMock()
        result.scalar_one_or_none.return_value = row
        results.append(result)
    db.execute = AsyncMock(side_effect=results)
    return db


def _row(**overrides):
    values = {
        "org_id": ORG_ID,
        "appointment_reminders": [{"enabled": True, "timingInHours": 48}],
        "message_templates": dict(DEFAULT_MESSAGE_TEMPLATES),
        "notification_toggles": dict(DEFAULT_TOGGLES),
    }
    values.update(overrides)
    return NotificationSettings(**values)


def _full_payload(**overrides):
    payload = {
        "appointment_reminders": [
            {"enabled": True, "timingInHours": 72},
            {"enabled": False, "timingInHours": 2},
        ],
        "message_templates": {
            "medical_history": "MH {{patientName}}",
            "payment_receipt": "PR {{amount}}",
            "appointment_reminder": "AR {{appointmentDate}}",
            "follow_up": "FU {{followUpReason}}",
            "payment_overdue": "PO {{amountDue}}",
        },
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# get_or_create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_or_create_returns_existing_settings():
    db = _mock_db(_row())

    config = await notification_settings_service.get_or_create(db, ORG_ID)

    assert [o.timing_in_hours for o in config.appointment_reminders] == [48]
    db.add.assert_not_called()
    db.commit.assert_not_called()


@pytest.mark.asyncio
async def test_get_or_create_persists_defaults():
    db = _mock_db(None)

    config = await notification_settings_service.get_or_create(db, ORG_ID)

    db.add.assert_called_once()
    db.commit.assert_awaited_once()
    assert [(o.enabled, o.timing_in_hours) for o in config.appointment_reminders] == [(True, 24), (True, 1)]
    for message_type in MessageType:
        assert config.message_templates.for_type(message_type) == DEFAULT_MESSAGE_TEMPLATES[message_type.value]
    assert config.notification_toggles.follow_up is True


def test_default_templates_use_documented_placeholders():
    assert "{{medicalHistoryLink}}" in DEFAULT_MESSAGE_TEMPLATES["medical_history"]
    assert "{{remainingBalance}}" in DEFAULT_MESSAGE_TEMPLATES["payment_receipt"]
    for name in ("appointmentDate", "appointmentTime", "doctorName", "clinicLocation"):
        assert "{{%s}}" % name in DEFAULT_MESSAGE_TEMPLATES["appointment_reminder"]
    assert "{{followUpReason}}" in DEFAULT_MESSAGE_TEMPLATES["follow_up"]
    assert "{{amountDue}}" in DEFAULT_MESSAGE_TEMPLATES["payment_overdue"]


@pytest.mark.asyncio
async def test_get_or_create_handles_concurrent_insert():
    """A unique-violation on insert falls back to the row the other worker created."""
    db = _mock_db(None, _row())
    db.commit.side_effect = [IntegrityError("INSERT", {}, Exception("duplicate key")), None]

    config = await notification_settings_service.get_or_create(db, ORG_ID)

    db.rollback.assert_awaited_once()
    assert [o.timing_in_hours for o in config.appointment_reminders] == [48]


@pytest.mark.asyncio
async def test_get_or_create_backfills_missing_toggles():
    row = _row(notification_toggles=None)
    db = _mock_db(row)

    config = await notification_settings_service.get_or_create(db, ORG_ID)

    assert row.notification_toggles == DEFAULT_TOGGLES
    db.commit.assert_awaited_once()
    assert config.notification_toggles.is_enabled(MessageType.PAYMENT_OVERDUE) is True


def test_enabled_offsets_keeps_configured_order():
    config = notification_settings_service._to_config(_row(appointment_reminders=[
        {"enabled": True, "timingInHours": 1},
        {"enabled": False, "timingInHours": 24},
        {"enabled": True, "timingInHours": 72},
    ]))
    assert [o.timing_in_hours for o in config.enabled_offsets()] == [1, 72]


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_replaces_offsets_and_templates():
    row = _row()
    db = _mock_db(row)

    config = await notification_settings_service.update(db, ORG_ID, _full_payload())

    assert row.appointment_reminders == [
        {"enabled": True, "timingInHours": 72},
        {"enabled": False, "timingInHours": 2},
    ]
    assert row.message_templates["follow_up"] == "FU {{followUpReason}}"
    assert [o.timing_in_hours for o in config.enabled_offsets()] == [72]
    # Toggles untouched when not supplied
    assert row.notification_toggles == DEFAULT_TOGGLES
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_update_replaces_toggles_when_supplied():
    row = _row()
    db = _mock_db(row)
    toggles = {**DEFAULT_TOGGLES, "payment_overdue": False}

    config = await notification_settings_service.update(
        db, ORG_ID, _full_payload(notification_toggles=toggles),
    )

    assert row.notification_toggles["payment_overdue"] is False
    assert config.notification_toggles.is_enabled(MessageType.PAYMENT_OVERDUE) is False


@pytest.mark.asyncio
async def test_update_rejects_partial_templates_before_writing():
    db = _mock_db(_row())
    payload = _full_payload()
    del payload["message_templates"]["payment_overdue"]

    with pytest.raises(ValidationError):
        await notification_settings_service.update(db, ORG_ID, payload)

    db.execute.assert_not_called()
    db.commit.assert_not_called()


@pytest.mark.asyncio
async def test_update_rejects_negative_offset():
    db = _mock_db(_row())
    payload = _full_payload(appointment_reminders=[{"enabled": True, "timingInHours": -1}])

    with pytest.raises(ValidationError):
        await notification_settings_service.update(db, ORG_ID, payload)
