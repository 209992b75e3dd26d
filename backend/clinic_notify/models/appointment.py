import enum

from sqlalchemy import Column, Index, String, Text, Date, Time, DateTime, ForeignKey, CheckConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinic_notify.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Statuses that still expect the patient to show up
REMINDABLE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_org_date_time", "org_id", "date", "time", "status"),
        Index("ix_appointments_patient", "org_id", "patient_id"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')",
            name="ck_appointments_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # Wall-clock date and time in the organization's timezone
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    status = Column(String(20), default=AppointmentStatus.PENDING.value, nullable=False)
    notes = Column(Text, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Patient and doctor are always needed to render a reminder
    patient = relationship("Patient", back_populates="appointments", lazy="selectin")
    doctor = relationship("User", foreign_keys=[doctor_id], lazy="selectin")

    def __repr__(self):
        return f"<Appointment(id={self.id}, date={self.date}, time={self.time}, status='{self.status}')>"
