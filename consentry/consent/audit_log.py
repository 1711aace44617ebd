"""Consent decision log.

Every persisted decision can be recorded as a :class:`ConsentLogEntry` for
accountability. IP addresses are anonymized and then hashed with a salt
before they are stored.
"""

import hashlib
import ipaddress
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .models import Category, ConsentRecord

logger = logging.getLogger(__name__)


def anonymize_ip(ip_address: str) -> Optional[str]:
    """Zero the last IPv4 octet or the last IPv6 group.

    Returns None for values that are not IP addresses.
    """
    try:
        address = ipaddress.ip_address((ip_address or "").strip())
    except ValueError:
        return None

    if address.version == 4:
        octets = str(address).split(".")
        octets[-1] = "0"
        return ".".join(octets)

    groups = address.exploded.split(":")
    groups[-1] = "0000"
    return ":".join(groups)


def hash_ip(ip_address: Optional[str], salt: str) -> Optional[str]:
    """SHA-256 of the anonymized address plus salt."""
    anonymized = anonymize_ip(ip_address) if ip_address else None
    if anonymized is None:
        return None
    return hashlib.sha256(f"{anonymized}{salt}".encode("utf-8")).hexdigest()


class ConsentLogEntry(BaseModel):
    """One logged consent decision."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = Field(default=None, description="Authenticated user, if any")
    visitor_id: Optional[str] = Field(default=None, description="Anonymous visitor identifier")
    ip_hash: Optional[str] = Field(default=None, description="Salted hash of the anonymized IP")
    consent_version: str
    timestamp: datetime
    categories: Dict[str, bool] = Field(default_factory=dict)
    granted: List[str] = Field(default_factory=list)
    user_agent: Optional[str] = None
    source: str = "banner"
    logged_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def granted_csv(self) -> str:
        return ",".join(self.granted)


class ConsentLogRepository(ABC):
    """Storage for consent log entries."""

    @abstractmethod
    def add(self, entry: ConsentLogEntry) -> None:
        pass

    @abstractmethod
    def list_entries(self, since: Optional[datetime] = None, limit: Optional[int] = None) -> List[ConsentLogEntry]:
        """Entries logged at or after ``since``, newest first."""
        pass

    def count(self, since: Optional[datetime] = None) -> int:
        return len(self.list_entries(since=since))


class InMemoryConsentLogRepository(ConsentLogRepository):
    """In-memory consent log for testing and development."""

    def __init__(self):
        self._entries: List[ConsentLogEntry] = []

    def add(self, entry: ConsentLogEntry) -> None:
        self._entries.append(entry)
        logger.debug(f"Logged consent entry {entry.id}")

    def list_entries(self, since: Optional[datetime] = None, limit: Optional[int] = None) -> List[ConsentLogEntry]:
        entries = [e for e in self._entries if since is None or e.logged_at >= since]
        entries.sort(key=lambda e: e.logged_at, reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return entries


class ConsentLogger:
    """Writes decisions to a consent log repository and summarizes them."""

    def __init__(self, repository: Optional[ConsentLogRepository] = None, salt: str = ""):
        self.repository = repository or InMemoryConsentLogRepository()
        self.salt = salt

    def log_consent(
        self,
        record: ConsentRecord,
        source: str = "banner",
        visitor_id: Optional[str] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> ConsentLogEntry:
        entry = ConsentLogEntry(
            user_id=user_id,
            visitor_id=visitor_id,
            ip_hash=hash_ip(ip_address, self.salt),
            consent_version=record.schema_version,
            timestamp=record.decided_at,
            categories=record.category_flags(),
            granted=[c.value for c in record.granted_categories()],
            user_agent=user_agent,
            source=source
        )
        self.repository.add(entry)
        return entry

    def get_statistics(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Acceptance counters per optional category."""
        entries = self.repository.list_entries(since=since)
        total = len(entries)

        stats: Dict[str, Any] = {"total": total}
        for category in (Category.ANALYTICS, Category.FUNCTIONAL, Category.MARKETING):
            accepted = sum(1 for e in entries if e.categories.get(category.value))
            stats[f"{category.value}_accepted"] = accepted
            stats[f"{category.value}_rate"] = round(accepted / total * 100, 1) if total else 0.0

        return stats
