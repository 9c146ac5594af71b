"""
Organization domain record store.

Status writes are compare-and-set UPDATEs so that two concurrent verification
or issuance calls for the same record cannot interleave into an inconsistent
status. Each returns True when the row matched the expected state.
"""
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.exceptions import Conflict, NotFound
from app.models.organization_domain import OrganizationDomain, SslStatus, VerificationStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get(db: Session, domain_id: UUID) -> Optional[OrganizationDomain]:
    return db.query(OrganizationDomain).filter(OrganizationDomain.id == domain_id).first()


def get_by_domain(db: Session, domain: str) -> Optional[OrganizationDomain]:
    return db.query(OrganizationDomain).filter(OrganizationDomain.domain == domain).first()


def get_verified_by_domain(db: Session, domain: str) -> Optional[OrganizationDomain]:
    return db.query(OrganizationDomain).filter(
        OrganizationDomain.domain == domain,
        OrganizationDomain.verification_status == VerificationStatus.VERIFIED.value,
    ).first()


def get_multi_by_organization(db: Session, organization_id: UUID) -> List[OrganizationDomain]:
    return db.query(OrganizationDomain).filter(
        OrganizationDomain.organization_id == organization_id
    ).order_by(OrganizationDomain.created_at.desc()).all()


def create(db: Session, *, organization_id: UUID, domain: str, verification_token: str) -> OrganizationDomain:
    """Insert a record; the unique index on `domain` decides concurrent races."""
    db_obj = OrganizationDomain(
        organization_id=organization_id,
        domain=domain,
        verification_token=verification_token,
        verification_status=VerificationStatus.PENDING.value,
        ssl_status=SslStatus.PENDING.value,
        is_primary=False,
    )
    db.add(db_obj)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Domain is already registered", {"domain": domain})
    db.refresh(db_obj)
    return db_obj


def mark_verified(db: Session, domain_id: UUID) -> bool:
    """pending/failed -> verified; verified_at is written only on this transition."""
    now = _now()
    count = db.query(OrganizationDomain).filter(
        OrganizationDomain.id == domain_id,
        OrganizationDomain.verification_status != VerificationStatus.VERIFIED.value,
    ).update(
        {
            OrganizationDomain.verification_status: VerificationStatus.VERIFIED.value,
            OrganizationDomain.verified_at: now,
            OrganizationDomain.last_checked_at: now,
            OrganizationDomain.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    return count == 1


def mark_verification_failed(db: Session, domain_id: UUID, *, keep_status: bool = False) -> bool:
    """Record a failed check. Never downgrades a row a concurrent call already verified."""
    now = _now()
    values = {
        OrganizationDomain.last_checked_at: now,
        OrganizationDomain.updated_at: now,
    }
    if not keep_status:
        values[OrganizationDomain.verification_status] = VerificationStatus.FAILED.value
    count = db.query(OrganizationDomain).filter(
        OrganizationDomain.id == domain_id,
        OrganizationDomain.verification_status != VerificationStatus.VERIFIED.value,
    ).update(values, synchronize_session=False)
    db.commit()
    return count == 1


def mark_ssl_issued(db: Session, domain_id: UUID) -> bool:
    """ssl_status -> issued, only while the domain is verified."""
    now = _now()
    count = db.query(OrganizationDomain).filter(
        OrganizationDomain.id == domain_id,
        OrganizationDomain.verification_status == VerificationStatus.VERIFIED.value,
    ).update(
        {
            OrganizationDomain.ssl_status: SslStatus.ISSUED.value,
            OrganizationDomain.ssl_issued_at: now,
            OrganizationDomain.ssl_last_error: None,
            OrganizationDomain.last_checked_at: now,
            OrganizationDomain.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    return count == 1


def mark_ssl_failed(db: Session, domain_id: UUID, *, diagnostic: str) -> bool:
    now = _now()
    count = db.query(OrganizationDomain).filter(
        OrganizationDomain.id == domain_id,
    ).update(
        {
            OrganizationDomain.ssl_status: SslStatus.FAILED.value,
            OrganizationDomain.ssl_last_error: diagnostic,
            OrganizationDomain.last_checked_at: now,
            OrganizationDomain.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    return count == 1


def set_primary(db: Session, *, db_obj: OrganizationDomain) -> OrganizationDomain:
    """Clear the current primary and set the new one in a single transaction."""
    organization_id = db_obj.organization_id
    now = _now()
    try:
        # Serialize concurrent set-primary calls for the same organization
        db.query(OrganizationDomain).filter(
            OrganizationDomain.organization_id == organization_id
        ).with_for_update().all()

        db.query(OrganizationDomain).filter(
            OrganizationDomain.organization_id == organization_id,
            OrganizationDomain.id != db_obj.id,
            OrganizationDomain.is_primary.is_(True),
        ).update(
            {OrganizationDomain.is_primary: False, OrganizationDomain.updated_at: now},
            synchronize_session=False,
        )
        db.query(OrganizationDomain).filter(
            OrganizationDomain.id == db_obj.id
        ).update(
            {OrganizationDomain.is_primary: True, OrganizationDomain.updated_at: now},
            synchronize_session=False,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Primary domain changed concurrently, retry the request")
    db.refresh(db_obj)
    return db_obj


def remove(db: Session, *, domain_id: UUID) -> OrganizationDomain:
    """Delete the record only. Proxy configuration and certificates stay in place."""
    db_obj = get(db, domain_id)
    if not db_obj:
        raise NotFound("Domain record not found")
    db.delete(db_obj)
    db.commit()
    return db_obj
