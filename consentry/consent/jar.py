"""Cookie jar abstraction for the enforcing context.

Enforcement and the cookie storage channel talk to cookies only through
:class:`CookieJar`. :class:`InMemoryCookieJar` models browser scoping rules
closely enough for deletion to behave realistically: a host-only cookie is
removed only by a delete without a domain, and a domain cookie only by a
delete naming its exact domain.
"""

import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# Suffixes under which cookies cannot be scoped
PUBLIC_SUFFIXES = {
    'com', 'org', 'net', 'edu', 'gov', 'mil', 'int',
    'co.uk', 'org.uk', 'ac.uk', 'gov.uk', 'com.au', 'org.au',
    'co.jp', 'ne.jp', 'or.jp', 'ac.jp', 'ad.jp', 'co.in',
    'com.br', 'org.br', 'gov.br', 'mil.br', 'net.br',
    'com.cn', 'org.cn', 'net.cn', 'ac.cn',
    'co.za', 'org.za', 'net.za', 'ac.za', 'gov.za',
    'co.nz', 'org.nz', 'com.mx', 'com.tr', 'co.kr',
    'github.io', 'herokuapp.com', 'appspot.com', 'amazonaws.com'
}

# Single-label TLDs outside PUBLIC_SUFFIXES that still cannot carry cookies
TOP_LEVEL_SUFFIXES = {
    'uk', 'de', 'fr', 'nl', 'no', 'se', 'dk', 'fi', 'es', 'it', 'eu',
    'io', 'co', 'us', 'ca', 'au', 'jp', 'cn', 'in', 'br', 'za', 'nz',
    'info', 'biz', 'app', 'dev'
}


@dataclass
class StoredCookie:
    """A cookie as seen by the enforcing context."""

    name: str
    value: str
    domain: str
    path: str = "/"
    host_only: bool = True
    max_age: Optional[int] = None
    same_site: Optional[str] = None
    secure: bool = False


def is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return True
    except ValueError:
        return False


def is_public_suffix(domain: str) -> bool:
    """True if cookies cannot be scoped to ``domain`` (a bare public suffix)."""
    domain = (domain or "").lower().strip(".")
    if not domain or is_ip_address(domain):
        return False
    return domain in PUBLIC_SUFFIXES or ("." not in domain and domain in TOP_LEVEL_SUFFIXES)


def root_domain(host: str) -> Optional[str]:
    """Registrable root of a host (eTLD+1).

    Multi-label public suffixes such as ``co.uk`` are matched longest first;
    other hosts fall back to their last two labels. Returns None for IP
    addresses, single-label hosts such as ``localhost`` and hosts that are
    themselves a public suffix, where a Domain attribute cannot be used.
    """
    host = (host or "").lower().strip(".")
    if not host or is_ip_address(host) or is_public_suffix(host):
        return None
    parts = host.split(".")
    if len(parts) < 2:
        return None

    for i in range(1, len(parts)):
        if ".".join(parts[i:]) in PUBLIC_SUFFIXES:
            return ".".join(parts[i - 1:])

    return ".".join(parts[-2:])


def parent_domains(host: str) -> List[str]:
    """The host and each parent of it down to its registrable root."""
    host = (host or "").lower().strip(".")
    root = root_domain(host)
    if not root:
        return [host] if host else []

    parents = []
    current = host
    while True:
        parents.append(current)
        if current == root or "." not in current:
            break
        current = current.split(".", 1)[1]
    return parents


def domain_variants(host: str, cookie_domain: Optional[str] = None) -> List[Optional[str]]:
    """Domain attributes to try when deleting a cookie.

    ``None`` stands for a host-only delete. The remaining variants cover the
    exact host and every parent up to the registrable root, each in bare and
    dotted form, plus the domain the cookie was observed on, without
    duplicates.
    """
    host = (host or "").lower().strip(".")
    variants: List[Optional[str]] = [None]
    if not host:
        return variants

    candidates = []
    for domain in parent_domains(host):
        candidates.extend([domain, f".{domain}"])

    if cookie_domain:
        observed = cookie_domain.lower().strip(".")
        if observed and not is_public_suffix(observed):
            candidates.extend([observed, f".{observed}"])

    for candidate in candidates:
        if candidate not in variants:
            variants.append(candidate)
    return variants


def parse_cookie_header(header: Optional[str]) -> Dict[str, str]:
    """Parse a raw ``Cookie:`` header into a name/value mapping.

    Values are returned as sent; the first occurrence of a name wins.
    """
    cookies: Dict[str, str] = {}
    if not header:
        return cookies

    for part in header.split(";"):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        if name and name not in cookies:
            cookies[name] = value.strip()
    return cookies


class CookieJar(ABC):
    """Cookies observable by the enforcing context."""

    @abstractmethod
    def list_cookies(self) -> List[StoredCookie]:
        """Cookies currently visible to the context."""
        pass

    @abstractmethod
    def get_cookie(self, name: str) -> Optional[str]:
        """Value of a visible cookie, or None."""
        pass

    @abstractmethod
    def set_cookie(
        self,
        name: str,
        value: str,
        domain: Optional[str] = None,
        path: str = "/",
        max_age: Optional[int] = None,
        same_site: Optional[str] = None,
        secure: bool = False
    ) -> None:
        """Set a cookie. Raises on rejection."""
        pass

    @abstractmethod
    def delete_cookie(self, name: str, domain: Optional[str] = None, path: str = "/") -> bool:
        """Expire a cookie under one scope. Returns True if a cookie was removed."""
        pass

    @property
    @abstractmethod
    def host(self) -> str:
        pass

    @property
    def is_secure(self) -> bool:
        return False


class InMemoryCookieJar(CookieJar):
    """In-memory jar with browser-like domain scoping."""

    def __init__(self, host: str = "example.com", secure: bool = False):
        self._host = host.lower()
        self._secure = secure
        self._cookies: List[StoredCookie] = []

    @property
    def host(self) -> str:
        return self._host

    @property
    def is_secure(self) -> bool:
        return self._secure

    def _domain_matches(self, domain: str) -> bool:
        return self._host == domain or self._host.endswith(f".{domain}")

    def _visible(self, cookie: StoredCookie) -> bool:
        if cookie.host_only:
            return cookie.domain == self._host
        return self._domain_matches(cookie.domain)

    def list_cookies(self) -> List[StoredCookie]:
        return [cookie for cookie in self._cookies if self._visible(cookie)]

    def get_cookie(self, name: str) -> Optional[str]:
        # Most recently set wins when several scopes hold the same name
        for cookie in reversed(self.list_cookies()):
            if cookie.name == name:
                return cookie.value
        return None

    def set_cookie(
        self,
        name: str,
        value: str,
        domain: Optional[str] = None,
        path: str = "/",
        max_age: Optional[int] = None,
        same_site: Optional[str] = None,
        secure: bool = False
    ) -> None:
        if secure and not self._secure:
            raise ValueError("Secure cookies require a secure context")

        if domain:
            normalized = domain.lower().lstrip(".")
            if not self._domain_matches(normalized):
                raise ValueError(f"Domain {domain} does not match host {self._host}")
            if is_public_suffix(normalized):
                raise ValueError(f"Domain {domain} is a public suffix")
            host_only = False
        else:
            normalized = self._host
            host_only = True

        # Same name, domain, host-only flag and path replace the old cookie
        self._cookies = [
            c for c in self._cookies
            if not (c.name == name and c.domain == normalized and c.path == path and c.host_only == host_only)
        ]

        if max_age is not None and max_age <= 0:
            return

        self._cookies.append(StoredCookie(
            name=name,
            value=value,
            domain=normalized,
            path=path,
            host_only=host_only,
            max_age=max_age,
            same_site=same_site,
            secure=secure
        ))

    def delete_cookie(self, name: str, domain: Optional[str] = None, path: str = "/") -> bool:
        if domain:
            normalized = domain.lower().lstrip(".")
            if not self._domain_matches(normalized):
                return False
            matches = [
                c for c in self._cookies
                if c.name == name and not c.host_only and c.domain == normalized and c.path == path
            ]
        else:
            matches = [
                c for c in self._cookies
                if c.name == name and c.host_only and c.domain == self._host and c.path == path
            ]

        for cookie in matches:
            self._cookies.remove(cookie)
        return bool(matches)

    def as_header(self) -> str:
        """Visible cookies rendered as a ``Cookie:`` header."""
        return "; ".join(f"{c.name}={c.value}" for c in self.list_cookies())

    def names(self) -> List[str]:
        return [c.name for c in self.list_cookies()]

    @classmethod
    def from_header(cls, header: str, host: str = "example.com", secure: bool = False) -> "InMemoryCookieJar":
        """Jar pre-populated from a request ``Cookie:`` header (host-only cookies)."""
        jar = cls(host=host, secure=secure)
        for name, value in parse_cookie_header(header).items():
            jar.set_cookie(name, value)
        return jar
