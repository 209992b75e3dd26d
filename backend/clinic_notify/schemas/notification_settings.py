from uuid import UUID

from pydantic import BaseModel, Field

from clinic_notify.models.message import MessageType


class ReminderOffset(BaseModel):
    enabled: bool = True
    timing_in_hours: int = Field(alias="timingInHours", ge=0, le=24 * 30)

    model_config = {"populate_by_name": True}


class MessageTemplates(BaseModel):
    """One template per message type. All five are required on update."""

    medical_history: str
    payment_receipt: str
    appointment_reminder: str
    follow_up: str
    payment_overdue: str

    def for_type(self, message_type: MessageType) -> str:
        return getattr(self, MessageType(message_type).value)


class NotificationToggles(BaseModel):
    medical_history: bool = True
    payment_receipt: bool = True
    follow_up: bool = True
    payment_overdue: bool = True

    def is_enabled(self, message_type: MessageType) -> bool:
        # Appointment reminders are switched per offset, not here
        return getattr(self, MessageType(message_type).value, True)


class NotificationConfig(BaseModel):
    """Typed view of an organization's notification settings.

    Loaded once per organization per scheduler tick and reused for every
    reminder dispatched during that tick.
    """

    org_id: UUID
    appointment_reminders: list[ReminderOffset]
    message_templates: MessageTemplates
    notification_toggles: NotificationToggles = Field(default_factory=NotificationToggles)

    def enabled_offsets(self) -> list[ReminderOffset]:
        return [offset for offset in self.appointment_reminders if offset.enabled]


class NotificationSettingsUpdate(BaseModel):
    """Full replacement payload. Offsets and templates are not merged."""

    appointment_reminders: list[ReminderOffset]
    message_templates: MessageTemplates
    notification_toggles: NotificationToggles | None = None
