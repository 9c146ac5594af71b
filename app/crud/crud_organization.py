from typing import Optional
from uuid import UUID
from sqlalchemy.orm import Session
from app.models.organization import Organization
from app.models.profile import Profile


def get(db: Session, organization_id: UUID) -> Optional[Organization]:
    return db.query(Organization).filter(Organization.id == organization_id).first()


def get_active(db: Session, organization_id: UUID) -> Optional[Organization]:
    return db.query(Organization).filter(
        Organization.id == organization_id, Organization.is_active.is_(True)
    ).first()


def get_active_by_slug(db: Session, slug: str) -> Optional[Organization]:
    return db.query(Organization).filter(
        Organization.slug == slug, Organization.is_active.is_(True)
    ).first()


def get_profile(db: Session, profile_id: UUID) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.id == profile_id).first()
