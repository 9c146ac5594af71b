from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api import deps
from app.crud import crud_organization
from app.exceptions import NotFound
from app.schemas.organization import Organization, ResolvedTenant

router = APIRouter()


@router.get("/tenant", response_model=ResolvedTenant)
def current_tenant(request: Request, db: Session = Depends(deps.get_db)) -> Any:
    """Organization resolved for this request's host / hint, or 404."""
    organization_id = getattr(request.state, "organization_id", None)
    organization = crud_organization.get_active(db, organization_id) if organization_id else None
    if not organization:
        raise NotFound("No organization matches this host", {"host": request.headers.get("host")})
    return ResolvedTenant(
        organization=Organization.model_validate(organization),
        matched_by=request.state.tenant_match,
        host=request.headers.get("host"),
    )
