"""Hostname canonicalization and validation for custom domains."""
import re
from typing import Iterable, Optional

from app.exceptions import InvalidInput

MAX_DOMAIN_LENGTH = 255

# Labels of 1-63 alphanumerics/hyphens, no leading/trailing hyphen, at least two labels
_DOMAIN_RE = re.compile(
    r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)+$"
)


def canonicalize_domain(raw: Optional[str]) -> str:
    if raw is None:
        return ""
    return raw.strip().lower()


def is_valid_domain(domain: str) -> bool:
    return bool(domain) and len(domain) <= MAX_DOMAIN_LENGTH and bool(_DOMAIN_RE.match(domain))


def is_under_platform_domain(domain: str, platform_domains: Iterable[str]) -> bool:
    for base in platform_domains:
        if domain == base or domain.endswith("." + base):
            return True
    return False


def validate_domain(raw: Optional[str], platform_domains: Iterable[str] = ()) -> str:
    """Return the canonical domain or raise InvalidInput."""
    if not raw or not isinstance(raw, str) or not raw.strip():
        raise InvalidInput("Domain is required")
    domain = canonicalize_domain(raw)
    if not is_valid_domain(domain):
        raise InvalidInput("Invalid domain format", {"domain": domain})
    if is_under_platform_domain(domain, platform_domains):
        raise InvalidInput(
            "Platform subdomains cannot be registered as custom domains",
            {"domain": domain},
        )
    return domain


def verification_record_name(domain: str, prefix: str = "_verification") -> str:
    return f"{prefix}.{domain}"
