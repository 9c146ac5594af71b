from typing import Optional
from uuid import UUID
from pydantic import BaseModel


class Organization(BaseModel):
    id: UUID
    slug: str
    name: str
    is_active: bool = True

    class Config:
        from_attributes = True


class ResolvedTenant(BaseModel):
    organization: Organization
    matched_by: str                     # hint, custom_domain, subdomain
    host: Optional[str] = None
