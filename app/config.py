import warnings
from typing import List, Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ── Known insecure default keys (must never be used in production) ──
_INSECURE_KEYS = {
    "change_this",
    "change_this_to_a_secure_random_string",
    "CHANGE_THIS_PRODUCTION_SECRET_MIN_32_CHARS",
    "secret",
}


def _split_csv(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    APP_NAME: str = "Membership Domains"
    APP_ENV: str = "development"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = "change_this"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # tooling tokens only

    # Logging
    LOG_LEVEL: str = ""     # empty = INFO in production/staging, DEBUG otherwise
    LOG_JSON: Optional[bool] = None  # None = JSON in production/staging

    # CORS
    BACKEND_CORS_ORIGINS: str = ""

    # Database
    DATABASE_URL: Optional[str] = None  # full URL override (tests, sqlite)
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "membership"
    DB_ECHO: bool = False

    # Tenant routing
    PLATFORM_DOMAINS: str = "m.ringing.org.uk,member.ringing.org.uk"
    RESERVED_SUBDOMAINS: str = "admin,www"
    TENANT_HINT_ENABLED: bool = True
    TENANT_HINT_QUERY_PARAM: str = "org"
    TENANT_HINT_HEADER: str = "X-Organization"
    DEV_HOSTS: str = "localhost,127.0.0.1"

    # DNS verification
    DOMAIN_VERIFICATION_PREFIX: str = "_verification"
    DNS_TIMEOUT_SECONDS: float = 5.0
    DNS_NAMESERVERS: str = ""             # empty = system resolv.conf
    DNS_TRANSIENT_ERRORS_KEEP_STATUS: bool = False

    # ACME client (certbot)
    ACME_ENABLED: bool = True
    ACME_CLIENT_PATH: str = "certbot"
    ACME_USE_SUDO: bool = False
    ACME_WEBROOT: str = "/var/www/certbot"
    ACME_CONTACT_EMAIL: str = ""          # empty = admin@<domain>
    ACME_STAGING: bool = False
    ACME_TIMEOUT_SECONDS: int = 180
    ACME_CERT_DIR: str = "/etc/letsencrypt/live"

    # Reverse proxy (nginx)
    PROXY_SITES_AVAILABLE: str = "/etc/nginx/sites-available"
    PROXY_SITES_ENABLED: str = "/etc/nginx/sites-enabled"
    PROXY_SITE_PREFIX: str = "membership-system"
    PROXY_TEMPLATE_HTTP: str = ""         # empty = bundled template
    PROXY_TEMPLATE_TLS: str = ""
    PROXY_MAIN_CONFIG: str = "/etc/nginx/nginx.conf"   # must include PROXY_SITES_ENABLED
    PROXY_TEST_COMMAND: str = "nginx -t"   # "-c <staged config>" is appended
    PROXY_RELOAD_COMMAND: str = "nginx -s reload"
    PROXY_USE_SUDO: bool = False
    PROXY_COMMAND_TIMEOUT_SECONDS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @model_validator(mode="after")
    def _validate_production_security(self) -> "Settings":
        """Block startup if critical secrets are insecure in production / staging."""
        if self.APP_ENV in ("production", "staging"):
            # ── SECRET_KEY ──
            if self.SECRET_KEY in _INSECURE_KEYS or len(self.SECRET_KEY) < 32:
                raise ValueError(
                    f"SECRET_KEY is insecure ('{self.SECRET_KEY[:8]}…'). "
                    "Set the signing key shared with the auth provider (≥ 32 chars)."
                )
            # ── Database password ──
            if not self.DATABASE_URL and self.POSTGRES_PASSWORD in ("postgres", ""):
                raise ValueError(
                    "POSTGRES_PASSWORD is set to default 'postgres'. "
                    "Set a strong password in .env or environment."
                )
            if self.ACME_STAGING:
                warnings.warn(
                    "ACME_STAGING is enabled; issued certificates will not be trusted by browsers.",
                    UserWarning,
                    stacklevel=2,
                )
        return self

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"
        )

    @property
    def platform_domains(self) -> List[str]:
        return _split_csv(self.PLATFORM_DOMAINS)

    @property
    def reserved_subdomains(self) -> List[str]:
        return _split_csv(self.RESERVED_SUBDOMAINS)

    @property
    def dev_hosts(self) -> List[str]:
        return _split_csv(self.DEV_HOSTS)

    @property
    def dns_nameservers(self) -> List[str]:
        return _split_csv(self.DNS_NAMESERVERS)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_staging(self) -> bool:
        return self.APP_ENV == "staging"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

settings = Settings()
