"""
DNS lookups used for ownership verification and the dns-check diagnostic.

Every resolver failure is normalized into DnsLookupError with a short code;
NXDOMAIN / NODATA mean "nothing published yet", the rest are transient.
"""
import logging
from typing import Iterable, List, Optional

import dns.exception
import dns.resolver

from app.config import settings
from app.exceptions import DnsLookupError

logger = logging.getLogger("membership.dns")


class DnsResolver:
    def __init__(self, timeout: float = 5.0, nameservers: Optional[Iterable[str]] = None):
        nameservers = list(nameservers or [])
        self._resolver = dns.resolver.Resolver(configure=not nameservers)
        if nameservers:
            self._resolver.nameservers = nameservers
        # Bound the whole query, retries included
        self._resolver.timeout = timeout
        self._resolver.lifetime = timeout

    @classmethod
    def from_settings(cls) -> "DnsResolver":
        return cls(timeout=settings.DNS_TIMEOUT_SECONDS, nameservers=settings.dns_nameservers)

    def _resolve(self, name: str, rdtype: str):
        try:
            return self._resolver.resolve(name, rdtype)
        except dns.resolver.NXDOMAIN:
            raise DnsLookupError("NXDOMAIN", f"{name} does not exist")
        except dns.resolver.NoAnswer:
            raise DnsLookupError("NODATA", f"{name} has no {rdtype} records")
        except dns.resolver.NoNameservers:
            raise DnsLookupError("SERVFAIL", f"No nameserver answered for {name}", transient=True)
        except dns.exception.Timeout:
            raise DnsLookupError("TIMEOUT", f"DNS lookup for {name} timed out", transient=True)
        except dns.exception.DNSException as exc:
            logger.warning("DNS lookup for %s %s failed: %s", name, rdtype, exc)
            raise DnsLookupError("DNS_ERROR", str(exc), transient=True)

    def txt_records(self, name: str) -> List[List[str]]:
        """TXT records as lists of character-string chunks, one list per record."""
        answer = self._resolve(name, "TXT")
        return [
            [chunk.decode("utf-8", errors="replace") for chunk in rdata.strings]
            for rdata in answer
        ]

    def a_records(self, name: str) -> List[str]:
        return [rdata.address for rdata in self._resolve(name, "A")]

    def cname_records(self, name: str) -> List[str]:
        return [rdata.target.to_text(omit_final_dot=True) for rdata in self._resolve(name, "CNAME")]
