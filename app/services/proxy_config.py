"""
nginx site management for custom domains

One generated site file per domain, named `<prefix>-<domain>` under
sites-available and linked from sites-enabled. Generated files are derived artifacts; the
database record is authoritative and the files can be re-rendered any time.

Activation sequence, serialized for the whole proxy configuration:
  render -> copy the enabled set plus the candidate into a hidden staging
  tree -> `nginx -t -c <staged main config>` -> swap into place + link
  -> reload nginx

Nothing under sites-enabled changes until the staged tree has passed
`nginx -t`, so a concurrent reload never picks up an unvalidated site.
"""
import enum
import fcntl
import logging
import os
import shlex
import shutil
import subprocess
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Tuple

from app.config import settings
from app.exceptions import InvalidInput, ProxyConfigError
from app.middleware.metrics import PROXY_CONFIG_CHANGES
from app.services.domain_names import is_valid_domain

logger = logging.getLogger("membership.proxy")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "nginx"
DEFAULT_HTTP_TEMPLATE = TEMPLATE_DIR / "custom-domain-http.conf"
DEFAULT_TLS_TEMPLATE = TEMPLATE_DIR / "custom-domain-tls.conf"
DOMAIN_PLACEHOLDER = "{{DOMAIN}}"

# In-process half of the configuration mutex; the flock covers other workers
_CONFIG_LOCK = threading.Lock()


class SiteState(str, enum.Enum):
    ABSENT = "absent"
    STAGED = "staged"
    ACTIVE = "active"


def _output_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class NginxSiteManager:
    def __init__(
        self,
        sites_available: str,
        sites_enabled: str,
        *,
        prefix: str = "membership-system",
        http_template: Optional[str] = None,
        tls_template: Optional[str] = None,
        test_command: str = "nginx -t",
        reload_command: str = "nginx -s reload",
        use_sudo: bool = False,
        timeout: int = 30,
        cert_dir: str = "/etc/letsencrypt/live",
        main_config: str = "/etc/nginx/nginx.conf",
    ):
        self.sites_available = Path(sites_available)
        self.sites_enabled = Path(sites_enabled)
        self.prefix = prefix
        self.http_template = Path(http_template) if http_template else DEFAULT_HTTP_TEMPLATE
        self.tls_template = Path(tls_template) if tls_template else DEFAULT_TLS_TEMPLATE
        self.test_command = test_command
        self.reload_command = reload_command
        self.use_sudo = use_sudo
        self.timeout = timeout
        self.cert_dir = Path(cert_dir)
        self.main_config = Path(main_config)

    @classmethod
    def from_settings(cls) -> "NginxSiteManager":
        return cls(
            settings.PROXY_SITES_AVAILABLE,
            settings.PROXY_SITES_ENABLED,
            prefix=settings.PROXY_SITE_PREFIX,
            http_template=settings.PROXY_TEMPLATE_HTTP or None,
            tls_template=settings.PROXY_TEMPLATE_TLS or None,
            test_command=settings.PROXY_TEST_COMMAND,
            reload_command=settings.PROXY_RELOAD_COMMAND,
            use_sudo=settings.PROXY_USE_SUDO,
            timeout=settings.PROXY_COMMAND_TIMEOUT_SECONDS,
            cert_dir=settings.ACME_CERT_DIR,
            main_config=settings.PROXY_MAIN_CONFIG,
        )

    # ── Paths ──

    def site_name(self, domain: str) -> str:
        return f"{self.prefix}-{domain}"

    def available_path(self, domain: str) -> Path:
        return self.sites_available / self.site_name(domain)

    def enabled_path(self, domain: str) -> Path:
        return self.sites_enabled / self.site_name(domain)

    def staged_path(self, domain: str) -> Path:
        return self.sites_available / f".{self.site_name(domain)}.staged"

    # ── Rendering ──

    def render(self, domain: str, tls: bool = False) -> str:
        # Only a validated canonical hostname ever reaches the template
        if not is_valid_domain(domain):
            raise InvalidInput("Invalid domain format", {"domain": domain})
        template = self.tls_template if tls else self.http_template
        return template.read_text(encoding="utf-8").replace(DOMAIN_PLACEHOLDER, domain)

    # ── State ──

    def site_state(self, domain: str) -> SiteState:
        if self.staged_path(domain).exists():
            return SiteState.STAGED
        if os.path.lexists(self.enabled_path(domain)):
            return SiteState.ACTIVE
        return SiteState.ABSENT

    def has_certificate(self, domain: str) -> bool:
        return (self.cert_dir / domain / "fullchain.pem").exists()

    def list_sites(self) -> List[dict]:
        sites = []
        if not self.sites_available.is_dir():
            return sites
        marker = f"{self.prefix}-"
        for path in sorted(self.sites_available.iterdir()):
            if not path.name.startswith(marker) or not path.is_file():
                continue
            domain = path.name[len(marker):]
            sites.append({
                "domain": domain,
                "enabled": os.path.lexists(self.enabled_path(domain)),
                "certificate": self.has_certificate(domain),
            })
        return sites

    # ── Mutations ──

    @contextmanager
    def _exclusive(self):
        self.sites_available.mkdir(parents=True, exist_ok=True)
        self.sites_enabled.mkdir(parents=True, exist_ok=True)
        lock_path = self.sites_available / f".{self.prefix}.lock"
        with _CONFIG_LOCK:
            with open(lock_path, "w") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def enable_domain(self, domain: str, tls: bool = False) -> None:
        """Render, validate the whole nginx config, then activate and reload."""
        content = self.render(domain, tls=tls)
        staged = self.staged_path(domain)
        target = self.available_path(domain)
        link = self.enabled_path(domain)

        with self._exclusive():
            ok, output = self._validate(domain, content)
            if not ok:
                PROXY_CONFIG_CHANGES.labels(action="enable", outcome="invalid").inc()
                logger.warning("nginx validation failed for %s, site not activated: %s", domain, output)
                raise ProxyConfigError(
                    "nginx configuration test failed; the new site was not activated", output
                )

            previous = target.read_text(encoding="utf-8") if target.exists() else None
            was_linked = os.path.lexists(link)
            try:
                staged.write_text(content, encoding="utf-8")
                os.replace(staged, target)
                if not was_linked:
                    self._link(target, link)
            except BaseException:
                self._restore(domain, previous, was_linked)
                raise
            finally:
                if staged.exists():
                    staged.unlink()

            ok, output = self._run(self.reload_command)
            if not ok:
                PROXY_CONFIG_CHANGES.labels(action="enable", outcome="reload_failed").inc()
                logger.warning("nginx reload failed after enabling %s: %s", domain, output)
                raise ProxyConfigError("nginx reload failed", output)

        PROXY_CONFIG_CHANGES.labels(action="enable", outcome="ok").inc()
        logger.info("Enabled nginx site %s (tls=%s)", self.site_name(domain), tls)

    def disable_domain(self, domain: str) -> bool:
        """Remove the enabled link only; the site file and certificate stay."""
        if not is_valid_domain(domain):
            raise InvalidInput("Invalid domain format", {"domain": domain})
        link = self.enabled_path(domain)
        with self._exclusive():
            if not os.path.lexists(link):
                logger.info("nginx site %s already disabled", self.site_name(domain))
                return False

            ok, output = self._validate(domain, None)
            if ok:
                os.unlink(link)
                ok, output = self._run(self.reload_command)
            if not ok:
                PROXY_CONFIG_CHANGES.labels(action="disable", outcome="failed").inc()
                logger.warning("nginx reload failed after disabling %s: %s", domain, output)
                raise ProxyConfigError("nginx reload failed after disabling the site", output)

        PROXY_CONFIG_CHANGES.labels(action="disable", outcome="ok").inc()
        logger.info("Disabled nginx site %s", self.site_name(domain))
        return True

    # ── Internals ──

    def _validate(self, domain: str, content: Optional[str]) -> Tuple[bool, str]:
        """
        Run the test command against a staged copy of the enabled set.

        The domain's site is replaced by ``content`` in the copy, or left
        out when ``content`` is None. The staged main config sits beside the
        real one so its relative includes still resolve.
        """
        try:
            main_text = self.main_config.read_text(encoding="utf-8")
        except OSError as exc:
            return False, f"cannot read {self.main_config}: {exc}"
        enabled_dir = str(self.sites_enabled)
        if enabled_dir not in main_text:
            return False, f"{self.main_config} does not include {enabled_dir}"

        name = self.site_name(domain)
        stage_root = self.sites_available / f".{self.prefix}.validate"
        stage_enabled = stage_root / "sites-enabled"
        staged_main = self.main_config.with_name(f".{self.prefix}-validate-{self.main_config.name}")

        shutil.rmtree(stage_root, ignore_errors=True)
        try:
            stage_enabled.mkdir(parents=True)
            for entry in self.sites_enabled.iterdir():
                if entry.name == name or entry.name.startswith(".") or not entry.exists():
                    continue
                shutil.copyfile(entry, stage_enabled / entry.name)
            if content is not None:
                (stage_enabled / name).write_text(content, encoding="utf-8")
            staged_main.write_text(main_text.replace(enabled_dir, str(stage_enabled)), encoding="utf-8")
            return self._run(self.test_command, "-c", str(staged_main))
        finally:
            if staged_main.exists():
                staged_main.unlink()
            shutil.rmtree(stage_root, ignore_errors=True)

    def _link(self, target: Path, link: Path) -> None:
        tmp_link = link.with_name(f".{link.name}.link")
        if os.path.lexists(tmp_link):
            os.unlink(tmp_link)
        os.symlink(target, tmp_link)
        os.replace(tmp_link, link)

    def _restore(self, domain: str, previous: Optional[str], was_linked: bool) -> None:
        target = self.available_path(domain)
        link = self.enabled_path(domain)
        if not was_linked and os.path.lexists(link):
            os.unlink(link)
        if previous is None:
            if target.exists():
                target.unlink()
        else:
            rollback = self.staged_path(domain)
            rollback.write_text(previous, encoding="utf-8")
            os.replace(rollback, target)

    def _run(self, command: str, *extra: str) -> Tuple[bool, str]:
        argv = shlex.split(command) + list(extra)
        if self.use_sudo:
            argv = ["sudo", "-n"] + argv
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            return False, f"{argv[0]} not found"
        except subprocess.TimeoutExpired as exc:
            return False, f"{command} timed out after {self.timeout}s {_output_text(exc.stderr)}".strip()
        output = "\n".join(p for p in (result.stdout.strip(), result.stderr.strip()) if p)
        return result.returncode == 0, output
