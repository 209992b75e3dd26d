"""
Message model: the ledger of every outbound patient notification.

Rows are created as ``pending`` before the gateway call and updated to
``sent`` or ``failed`` afterwards. Rows are never deleted; they are the audit
trail and the source of truth for reminder de-duplication.
"""

import enum
import uuid

from sqlalchemy import Column, Index, String, Integer, Text, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinic_notify.database import Base


class MessageType(str, enum.Enum):
    MEDICAL_HISTORY = "medical_history"
    PAYMENT_RECEIPT = "payment_receipt"
    APPOINTMENT_REMINDER = "appointment_reminder"
    FOLLOW_UP = "follow_up"
    PAYMENT_OVERDUE = "payment_overdue"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        # Reminder de-duplication lookup
        Index(
            "ix_messages_reminder_dedup",
            "org_id", "appointment_id", "timing_in_hours", "status", "created_at",
        ),
        Index("ix_messages_org_patient_created", "org_id", "patient_id", "created_at"),
        Index("ix_messages_org_created", "org_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)

    # medical_history, payment_receipt, appointment_reminder, follow_up, payment_overdue
    type = Column(String(32), nullable=False)

    # Rendered text exactly as handed to the gateway; never rewritten
    content = Column(Text, nullable=False)

    # pending, sent, failed
    status = Column(String(20), nullable=False, default=MessageStatus.PENDING.value)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)

    # Free-form correlation bag (paymentId, amount, appointmentId, ...).
    # "metadata" is reserved on declarative classes, hence the attribute name.
    meta = Column("metadata", JSONB, nullable=True)

    # Typed copies of the reminder correlation keys, NULL for other types
    appointment_id = Column(UUID(as_uuid=True), ForeignKey("appointments.id"), nullable=True)
    timing_in_hours = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    patient = relationship("Patient", lazy="selectin")

    def __repr__(self):
        return (
            f"<Message(id={self.id}, type='{self.type}', "
            f"status='{self.status}', sent_at={self.sent_at})>"
        )
