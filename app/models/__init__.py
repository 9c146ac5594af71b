from app.db.base_class import Base
from app.models.organization import Organization
from app.models.profile import Profile
from app.models.organization_domain import OrganizationDomain, VerificationStatus, SslStatus
