"""
Organization Domain Model

One row per custom domain attempt. This table is the single source of truth;
nginx site files and certificates on disk are derived from it.
"""
import enum
import uuid
from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Text, CheckConstraint, Index, func, text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.db.base_class import Base


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class SslStatus(str, enum.Enum):
    PENDING = "pending"
    ISSUED = "issued"
    FAILED = "failed"
    EXPIRED = "expired"


class OrganizationDomain(Base):
    __tablename__ = "organization_domains"
    __table_args__ = (
        CheckConstraint(
            "verification_status IN ('pending', 'verified', 'failed')",
            name="ck_organization_domains_verification_status",
        ),
        CheckConstraint(
            "ssl_status IN ('pending', 'issued', 'failed', 'expired')",
            name="ck_organization_domains_ssl_status",
        ),
        # At most one primary domain per organization
        Index(
            "ix_organization_domains_one_primary",
            "organization_id",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary = 1"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    domain = Column(String(255), unique=True, nullable=False, index=True)  # canonical form

    # DNS Verification
    verification_token = Column(String(64), nullable=False)   # TXT record value
    verification_status = Column(String(20), nullable=False, default=VerificationStatus.PENDING.value)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    last_checked_at = Column(DateTime(timezone=True), nullable=True)

    is_primary = Column(Boolean, nullable=False, default=False)

    # SSL status
    ssl_status = Column(String(20), nullable=False, default=SslStatus.PENDING.value)
    ssl_issued_at = Column(DateTime(timezone=True), nullable=True)
    ssl_last_error = Column(Text, nullable=True)  # last ACME client diagnostic

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    organization = relationship("Organization", back_populates="domains")

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED.value
