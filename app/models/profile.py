import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.db.base_class import Base

ADMIN_ROLES = ("admin", "super_admin")


class Profile(Base):
    """Authenticated user as seen by this service (id == auth subject)."""
    __tablename__ = "profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=True, index=True)
    email = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="member")  # member, admin, super_admin
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    organization = relationship("Organization", back_populates="profiles")

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    def administers(self, organization_id) -> bool:
        if self.is_super_admin:
            return True
        return self.role in ADMIN_ROLES and self.organization_id == organization_id
