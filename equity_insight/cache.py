"""Caching layer for model results."""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from equity_insight.config import Settings
from equity_insight.entities import normalize_key
from equity_insight.models import IPOItem, MarketBrief


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keys in the persisted store; bump the suffix when a payload shape changes
MARKET_STORAGE_KEY = "equity_insight_market_v1"
IPO_LIST_STORAGE_KEY = "equity_insight_ipo_list_v1"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """
    One cached payload.

    Representation Invariants:
    - key is a normalized request identity
    - stored_at is a POSIX timestamp (seconds)
    - entries are replaced whole, never updated in place
    """
    key: str
    payload: T
    stored_at: float


def is_fresh(entry: Optional[CacheEntry], ttl: float, now: float) -> bool:
    """True if entry exists and was stored less than ttl seconds before now."""
    return entry is not None and (now - entry.stored_at) < ttl


class JsonFileStore:
    """
    Key-value store persisted as a single JSON document.

    Survives process restarts. Any storage problem (unreadable file,
    corrupt JSON, read-only disk, unserializable value) is logged and
    reported as "no value" so callers fall back to a fresh fetch.

    Representation Invariants:
    - path is None (storage unavailable) or an absolute Path
    """

    def __init__(self, path: Optional[Path]) -> None:
        self._path = path.absolute() if path is not None else None

    @property
    def available(self) -> bool:
        return self._path is not None

    def _read_all(self) -> Dict[str, Any]:
        if self._path is None:
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Could not read cache file %s: %s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[Any]:
        return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        if self._path is None:
            return
        data = self._read_all()
        data[key] = value
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f)
            tmp_path.replace(self._path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not write cache file %s: %s", self._path, e)


class CacheStore(Generic[T]):
    """
    TTL-keyed store mapping a request identity to its last payload.

    The store never evicts: freshness is decided by the caller with
    is_fresh(), and a later put() for the same key is the only reclamation.

    When a backing JsonFileStore is given, puts are written through and
    gets fall back to the backing store on a memory miss. encode/decode
    convert payloads to and from JSON-serializable values.
    """

    def __init__(
        self,
        backing: Optional[JsonFileStore] = None,
        encode: Callable[[T], Any] = lambda payload: payload,
        decode: Callable[[Any], T] = lambda value: value,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._backing = backing
        self._encode = encode
        self._decode = decode
        self._clock = clock

    def get(self, key: str) -> Optional[CacheEntry[T]]:
        entry = self._entries.get(key)
        if entry is not None or self._backing is None:
            return entry
        return self._load(key)

    def put(self, key: str, payload: T) -> CacheEntry[T]:
        entry = CacheEntry(key=key, payload=payload, stored_at=self._clock())
        self._entries[key] = entry
        if self._backing is not None:
            try:
                encoded = self._encode(payload)
            except (TypeError, ValueError) as e:
                logger.warning("Could not encode cache entry '%s': %s", key, e)
            else:
                self._backing.set(key, {"data": encoded, "timestamp": entry.stored_at})
        return entry

    def _load(self, key: str) -> Optional[CacheEntry[T]]:
        """Rehydrate an entry persisted by an earlier process; failures are misses."""
        record = self._backing.get(key)
        if not isinstance(record, dict) or "data" not in record:
            return None
        try:
            entry = CacheEntry(
                key=key,
                payload=self._decode(record["data"]),
                stored_at=float(record.get("timestamp", 0)),
            )
        except (TypeError, ValueError) as e:
            logger.warning("Discarding unreadable cache entry '%s': %s", key, e)
            return None
        self._entries[key] = entry
        return entry


@dataclass(frozen=True)
class ScreenerState:
    """Last-served screener result, with the query exactly as the user typed it."""
    query: str
    data: List[Any]


class CacheService:
    """
    All caches used by the research service, constructed once at start-up.

    - market: persisted single slot (MarketBrief)
    - ipo_list: persisted single slot (list of IPOItem)
    - screener: process-lifetime map, normalized query -> list of ScreenerMatch

    Analysis and IPO detail reports are never cached.
    """

    def __init__(
        self,
        market: CacheStore,
        ipo_list: CacheStore,
        screener: CacheStore,
    ) -> None:
        self.market = market
        self.ipo_list = ipo_list
        self.screener = screener
        self.last_screener_query: Optional[str] = None

    @classmethod
    def create(cls, settings: Settings, clock: Callable[[], float] = time.time) -> "CacheService":
        """
        Build the cache service for an application instance.

        Args:
            settings: Settings; cache.persist_path enables cross-session caching
            clock: Time source for entry timestamps

        Returns:
            A new CacheService
        """
        store = JsonFileStore(settings.cache.persist_path)
        backing = store if store.available else None
        if backing is None:
            logger.info("No cache persist path configured; market and IPO caches last for this process only")
        return cls(
            market=CacheStore(
                backing=backing,
                encode=lambda brief: brief.model_dump(mode="json", by_alias=True),
                decode=MarketBrief.model_validate,
                clock=clock,
            ),
            ipo_list=CacheStore(
                backing=backing,
                encode=lambda items: [item.model_dump(mode="json", by_alias=True) for item in items],
                decode=lambda values: [IPOItem.model_validate(v) for v in values],
                clock=clock,
            ),
            screener=CacheStore(clock=clock),
        )

    def remember_screener_query(self, query: str) -> None:
        self.last_screener_query = query

    def screener_state(self) -> Optional[ScreenerState]:
        """Return the last-served screener query and its cached matches, if any."""
        if self.last_screener_query is None:
            return None
        entry = self.screener.get(normalize_key(self.last_screener_query))
        if entry is None:
            return None
        return ScreenerState(query=self.last_screener_query, data=entry.payload)
