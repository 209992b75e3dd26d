from clinic_notify.schemas.notification_settings import (
    ReminderOffset, MessageTemplates, NotificationToggles,
    NotificationConfig, NotificationSettingsUpdate,
)
from clinic_notify.schemas.message import MessageResponse, MessageListResponse
from clinic_notify.schemas.gateway import (
    GatewayConfigResponse, GatewayConfigUpdate, GatewaySessionStatus,
)
