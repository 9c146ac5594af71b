import logging
import uuid
from typing import Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.security import decode_access_token
from app.crud import crud_organization
from app.db.session import SessionLocal
from app.models.profile import Profile
from app.services.certificates import CertbotIssuer, CertificateIssuer
from app.services.dns_lookup import DnsResolver
from app.services.proxy_config import NginxSiteManager

logger = logging.getLogger("membership.auth")

# Tokens come from the external auth provider; there is no login route here
reusable_oauth2 = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token")


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_profile(
    db: Session = Depends(get_db),
    token: str = Depends(reusable_oauth2),
) -> Profile:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        profile_id = uuid.UUID(str(payload.get("sub")))
    except (JWTError, ValueError):
        raise credentials_exception

    profile = crud_organization.get_profile(db, profile_id)
    if not profile:
        logger.warning("Token subject %s has no profile", profile_id)
        raise credentials_exception
    return profile


def get_super_admin(current_profile: Profile = Depends(get_current_profile)) -> Profile:
    if not current_profile.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin only")
    return current_profile


# ── External collaborators (overridden in tests) ──

def get_dns_resolver() -> DnsResolver:
    return DnsResolver.from_settings()


def get_certificate_issuer() -> CertificateIssuer:
    return CertbotIssuer.from_settings()


def get_proxy_manager() -> NginxSiteManager:
    return NginxSiteManager.from_settings()
