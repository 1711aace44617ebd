"""Consent record persistence across ordered storage channels.

The store reads channels in order and returns the first record that decodes
and validates. Writes go to every writable channel independently; the first
writable channel is the primary and decides whether a write succeeded.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import quote, unquote

from pydantic import ValidationError

from .config import StorageConfig
from .jar import CookieJar, domain_variants, parse_cookie_header, root_domain
from .models import ConsentRecord

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves untouched
_URI_COMPONENT_SAFE = "-_.!~*'()"


def _strip_slashes(value: str) -> str:
    """Remove backslash escaping (``\\"`` -> ``"``)."""
    return re.sub(r"\\(.)", r"\1", value)


def _candidates(raw: str) -> List[str]:
    once = unquote(raw)
    twice = unquote(once)
    attempts = [raw, once, _strip_slashes(once), twice, _strip_slashes(twice)]

    candidates: List[str] = []
    for attempt in attempts:
        attempt = attempt.strip()
        # Quoted cookie values
        if len(attempt) >= 2 and attempt[0] == attempt[-1] == '"':
            attempt = attempt[1:-1]
        if attempt and attempt not in candidates:
            candidates.append(attempt)
    return candidates


def decode_consent_value(raw: Optional[str]) -> Optional[ConsentRecord]:
    """Decode a stored consent value, tolerating repeated encoding.

    Attempts, in order: direct JSON, percent-decoded once, backslash
    un-escaped, percent-decoded twice, un-escaped after double decoding.
    Each attempt must validate as a record with a ``categories`` mapping.

    Returns:
        The first valid record, or None when nothing validates.
    """
    if not raw or not isinstance(raw, str):
        return None

    for candidate in _candidates(raw):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue

        if not isinstance(data, dict) or not isinstance(data.get("categories"), dict):
            continue

        try:
            return ConsentRecord.model_validate(data)
        except ValidationError as e:
            logger.debug(f"Consent value rejected by validation: {e.error_count()} errors")
            continue

    return None


def encode_consent_value(record: ConsentRecord) -> str:
    """Percent-encoded wire form of a record."""
    return quote(record.to_wire(), safe=_URI_COMPONENT_SAFE)


class StorageAdapter(ABC):
    """One named consent storage channel."""

    name: str = "adapter"
    writable: bool = True

    @abstractmethod
    def read_raw(self) -> Optional[str]:
        """Raw stored value, or None when nothing is stored."""
        pass

    def write_raw(self, value: str) -> None:
        raise NotImplementedError(f"{self.name} channel is read-only")

    def clear(self) -> None:
        pass

    def read(self) -> Optional[ConsentRecord]:
        """Decoded and validated record from this channel only."""
        return decode_consent_value(self.read_raw())


class CookieChannel(StorageAdapter):
    """Primary channel: percent-encoded JSON in a first-party cookie."""

    name = "cookie"

    def __init__(
        self,
        jar: CookieJar,
        key: str = "cookie_consent",
        max_age: int = 31536000,
        path: str = "/",
        same_site: str = "Lax"
    ):
        self.jar = jar
        self.key = key
        self.max_age = max_age
        self.path = path
        self.same_site = same_site

    def read_raw(self) -> Optional[str]:
        return self.jar.get_cookie(self.key)

    def write_raw(self, value: str) -> None:
        self.jar.set_cookie(
            self.key,
            value,
            domain=root_domain(self.jar.host),
            path=self.path,
            max_age=self.max_age,
            same_site=self.same_site,
            secure=self.jar.is_secure
        )

    def clear(self) -> None:
        for domain in domain_variants(self.jar.host):
            self.jar.delete_cookie(self.key, domain=domain, path=self.path)


class RawHeaderChannel(StorageAdapter):
    """Read-only channel over a raw ``Cookie:`` request header."""

    name = "header"
    writable = False

    def __init__(self, header: Union[str, Callable[[], Optional[str]], None], key: str = "cookie_consent"):
        self.header = header
        self.key = key

    def read_raw(self) -> Optional[str]:
        header = self.header() if callable(self.header) else self.header
        return parse_cookie_header(header).get(self.key)


class JsonFileCache(MutableMapping):
    """Key-value cache persisted as a single JSON object file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def __getitem__(self, key: str) -> Any:
        return self._load()[key]

    def __setitem__(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def __delitem__(self, key: str) -> None:
        data = self._load()
        del data[key]
        self._save(data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())


class LocalCacheChannel(StorageAdapter):
    """Fallback channel: plain JSON under the same key in a local cache."""

    name = "local_cache"

    def __init__(self, cache: Optional[MutableMapping] = None, key: str = "cookie_consent"):
        self.cache = cache if cache is not None else {}
        self.key = key

    def read_raw(self) -> Optional[str]:
        value = self.cache.get(self.key)
        return value if isinstance(value, str) else None

    def write_raw(self, value: str) -> None:
        # Cached unencoded, as the mirror of the cookie value
        self.cache[self.key] = unquote(value)

    def clear(self) -> None:
        self.cache.pop(self.key, None)


@dataclass
class WriteResult:
    """Per-channel outcome of a consent write."""

    primary: Optional[str] = None
    results: Dict[str, bool] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """True iff the primary channel accepted the record."""
        return self.primary is not None and self.results.get(self.primary, False)


class ConsentStore:
    """Reads and writes the consent record over ordered channels."""

    def __init__(self, adapters: List[StorageAdapter]):
        if not adapters:
            raise ValueError("ConsentStore requires at least one storage adapter")
        self.adapters = list(adapters)

    @property
    def primary(self) -> Optional[StorageAdapter]:
        for adapter in self.adapters:
            if adapter.writable:
                return adapter
        return None

    def read(self) -> Optional[ConsentRecord]:
        """First valid record in channel order, or None."""
        for adapter in self.adapters:
            try:
                record = adapter.read()
            except Exception as e:
                logger.warning(f"Consent channel {adapter.name} could not be read: {e}")
                continue
            if record is not None:
                logger.debug(f"Consent record read from {adapter.name} channel")
                return record
        return None

    def write(self, record: ConsentRecord) -> WriteResult:
        """Write the record to every writable channel."""
        value = encode_consent_value(record)
        primary = self.primary
        result = WriteResult(primary=primary.name if primary else None)

        for adapter in self.adapters:
            if not adapter.writable:
                continue
            try:
                adapter.write_raw(value)
                result.results[adapter.name] = True
            except Exception as e:
                result.results[adapter.name] = False
                result.errors[adapter.name] = str(e)
                if adapter is primary:
                    logger.error(f"Primary consent channel {adapter.name} write failed: {e}")
                else:
                    logger.warning(f"Fallback consent channel {adapter.name} write failed: {e}")

        return result

    def clear(self) -> None:
        """Remove the record from every channel."""
        for adapter in self.adapters:
            try:
                adapter.clear()
            except Exception as e:
                logger.warning(f"Consent channel {adapter.name} could not be cleared: {e}")


def create_consent_store(
    jar: CookieJar,
    config: Optional[StorageConfig] = None,
    header: Union[str, Callable[[], Optional[str]], None] = None,
    cache: Optional[MutableMapping] = None
) -> ConsentStore:
    """Build the default channel order: cookie, raw header, local cache."""
    config = config or StorageConfig()

    if cache is None and config.cache_path:
        cache = JsonFileCache(config.cache_path)

    adapters: List[StorageAdapter] = [
        CookieChannel(
            jar,
            key=config.storage_key,
            max_age=config.cookie_max_age_seconds,
            path=config.cookie_path,
            same_site=config.same_site
        )
    ]
    if header is not None:
        adapters.append(RawHeaderChannel(header, key=config.storage_key))
    adapters.append(LocalCacheChannel(cache, key=config.storage_key))

    return ConsentStore(adapters)
