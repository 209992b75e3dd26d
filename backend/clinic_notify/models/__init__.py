from clinic_notify.models.organization import Organization
from clinic_notify.models.organization_variable import OrganizationVariable, OrganizationVariableKey
from clinic_notify.models.user import User
from clinic_notify.models.patient import Patient
from clinic_notify.models.appointment import Appointment, AppointmentStatus
from clinic_notify.models.notification_settings import NotificationSettings
from clinic_notify.models.message import Message, MessageStatus, MessageType

__all__ = [
    "Organization",
    "OrganizationVariable",
    "OrganizationVariableKey",
    "User",
    "Patient",
    "Appointment",
    "AppointmentStatus",
    "NotificationSettings",
    "Message",
    "MessageStatus",
    "MessageType",
]
