import enum

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinic_notify.database import Base


class OrganizationVariableKey(str, enum.Enum):
    WAHA_API_URL = "waha.apiUrl"
    WAHA_API_KEY = "waha.apiKey"


class OrganizationVariable(Base):
    __tablename__ = "organization_variables"
    __table_args__ = (
        UniqueConstraint("org_id", "key", name="uq_organization_variables_org_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    updated_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    organization = relationship("Organization", back_populates="variables", lazy="select")

    def __repr__(self):
        return f"<OrganizationVariable(org_id={self.org_id}, key='{self.key}')>"
