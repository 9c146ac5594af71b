from typing import List, Optional
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, Field


class DomainCreate(BaseModel):
    organization_id: UUID = Field(alias="organizationId")
    domain: str

    model_config = {"populate_by_name": True}


class DomainInfo(BaseModel):
    id: UUID
    organization_id: UUID
    domain: str
    verification_token: str
    verification_status: str
    verified_at: Optional[datetime] = None
    is_primary: bool = False
    ssl_status: str
    ssl_issued_at: Optional[datetime] = None
    ssl_last_error: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DomainDetail(DomainInfo):
    # Derived from the proxy / certificate store, never authoritative
    routing_state: str = "absent"
    certificate_present: bool = False
    verification_record_name: Optional[str] = None


class DomainVerifyResult(BaseModel):
    domain: str
    verified: bool
    message: str
    found: Optional[List[str]] = None
    expected: Optional[str] = None
    already_verified: bool = False
    dns_error: Optional[str] = None


class CertificateIssueResult(BaseModel):
    success: bool
    domain: str
    message: str
    ssl_status: str
    details: Optional[str] = None       # ACME client / proxy diagnostic text
    routing_applied: bool = False


class RecordLookup(BaseModel):
    values: List[str] = []
    error: Optional[str] = None


class DnsCheck(BaseModel):
    domain: str
    timestamp: datetime
    a_records: RecordLookup
    cname_records: RecordLookup
    verification_record_name: str
    verification_record: RecordLookup


class RoutingStatus(BaseModel):
    domain: str
    routing_state: str
    tls: bool = False
    message: str
