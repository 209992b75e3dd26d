from sqlalchemy import Column, String, Boolean, Text, DateTime, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinic_notify.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    name = Column(String(255), nullable=False)
    location = Column(Text, nullable=True)
    phone = Column(String(50), nullable=True)
    # IANA timezone name; NULL means UTC
    timezone = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    notification_settings = relationship(
        "NotificationSettings", back_populates="organization", uselist=False, lazy="select",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    variables = relationship(
        "OrganizationVariable", back_populates="organization", lazy="select",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self):
        return f"<Organization(id={self.id}, name='{self.name}', timezone='{self.timezone}')>"
