from fastapi import APIRouter

from app.api.v1.endpoints import custom_domains, tenant

api_router = APIRouter()
api_router.include_router(custom_domains.router, prefix="/domains", tags=["domains"])
api_router.include_router(tenant.router, tags=["tenant"])
