from sqlalchemy import Column, DateTime, ForeignKey, text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinic_notify.database import Base


class NotificationSettings(Base):
    __tablename__ = "notification_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False)

    # [{"enabled": true, "timingInHours": 24}, ...] in configured order
    appointment_reminders = Column(JSONB, nullable=False)

    # {"medical_history": "...", "payment_receipt": "...", ...}
    message_templates = Column(JSONB, nullable=False)

    # {"medical_history": true, "payment_receipt": true, ...}; NULL on rows
    # created before toggles existed
    notification_toggles = Column(JSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    organization = relationship("Organization", back_populates="notification_settings", lazy="select")

    def __repr__(self):
        return f"<NotificationSettings(id={self.id}, org_id={self.org_id})>"
