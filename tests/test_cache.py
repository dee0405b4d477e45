"""Tests for cache stores and the cache service."""

import json
import pytest
from pathlib import Path
import tempfile

from equity_insight.cache import (
    IPO_LIST_STORAGE_KEY,
    MARKET_STORAGE_KEY,
    CacheEntry,
    CacheService,
    CacheStore,
    JsonFileStore,
    is_fresh,
)
from equity_insight.config import CacheSettings, Settings
from equity_insight.models import IPOItem, MarketBrief, ScreenerMatch


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestIsFresh:

    def test_missing_entry_is_stale(self):
        """Test that an absent entry is never fresh."""
        assert not is_fresh(None, 300, 0)

    def test_within_ttl(self):
        """Test that an entry younger than the TTL is fresh."""
        entry = CacheEntry(key="k", payload=1, stored_at=100.0)
        assert is_fresh(entry, 300, 399.0)

    def test_at_ttl_boundary_is_stale(self):
        """Test that an entry exactly TTL old is stale."""
        entry = CacheEntry(key="k", payload=1, stored_at=100.0)
        assert not is_fresh(entry, 300, 400.0)


class TestCacheStore:

    def test_put_then_get(self):
        """Test that a stored payload is returned with its timestamp."""
        clock = FakeClock()
        store = CacheStore(clock=clock)
        store.put("nifty", {"value": 1})

        entry = store.get("nifty")
        assert entry.payload == {"value": 1}
        assert entry.stored_at == clock.now

    def test_later_put_replaces_entry(self):
        """The most recently stored payload is the one served."""
        clock = FakeClock()
        store = CacheStore(clock=clock)
        store.put("k", "old")
        clock.now += 10
        store.put("k", "new")

        entry = store.get("k")
        assert entry.payload == "new"
        assert entry.stored_at == clock.now

    def test_miss(self):
        """Test that an unknown key returns None."""
        assert CacheStore().get("absent") is None


class TestJsonFileStore:

    def test_unavailable_store_is_a_miss(self):
        """Test that a store without a path ignores writes."""
        store = JsonFileStore(None)
        assert not store.available
        store.set("k", 1)
        assert store.get("k") is None

    def test_set_and_get(self):
        """Test that values round through the JSON document."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir) / "nested" / "store.json")
            store.set("a", {"x": 1})
            store.set("b", [1, 2])
            assert store.get("a") == {"x": 1}
            assert store.get("b") == [1, 2]

    def test_corrupt_file_is_a_miss(self):
        """Test that a corrupt document reads as empty."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "store.json"
            path.write_text("{not json")
            store = JsonFileStore(path)
            assert store.get("a") is None

            # A write replaces the corrupt document
            store.set("a", 1)
            assert json.loads(path.read_text()) == {"a": 1}

    def test_unserializable_value_is_not_raised(self):
        """Test that an unserializable value is logged, not raised."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir) / "store.json")
            store.set("a", object())
            assert store.get("a") is None

    def test_unusable_path_is_a_miss(self):
        """A path the OS rejects (name too long) is reported as no value."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir) / ("x" * 300) / "store.json")
            assert store.available
            assert store.get("a") is None
            store.set("a", 1)
            assert store.get("a") is None

    def test_directory_path_is_a_miss(self):
        """Test that a path pointing at a directory reads as empty."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir))
            assert store.get("a") is None


class TestCacheService:

    @pytest.fixture
    def brief(self):
        return MarketBrief.model_validate({
            "market_sentiment": "Bullish",
            "sentiment_score": 64,
            "indices": [{"name": "NIFTY 50", "value": "24,500", "percentChange": "+0.8%", "trend": "up"}],
        })

    def test_market_survives_restart(self, brief):
        """A persisted market brief is served by a fresh service instance."""
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = Settings(cache=CacheSettings(persist_path=Path(tmpdir) / "store.json"))
            clock = FakeClock()

            CacheService.create(settings, clock=clock).market.put(MARKET_STORAGE_KEY, brief)

            entry = CacheService.create(settings, clock=clock).market.get(MARKET_STORAGE_KEY)
            assert entry is not None
            assert entry.payload == brief
            assert entry.stored_at == clock.now
            assert entry.payload.indices[0].percent_change == "+0.8%"

    def test_ipo_list_survives_restart(self):
        """Test that the IPO list is served by a fresh service instance."""
        items = [IPOItem.model_validate({"name": "Acme Ltd", "status": "Open", "priceBand": "100-105"})]
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = Settings(cache=CacheSettings(persist_path=Path(tmpdir) / "store.json"))
            CacheService.create(settings).ipo_list.put(IPO_LIST_STORAGE_KEY, items)

            entry = CacheService.create(settings).ipo_list.get(IPO_LIST_STORAGE_KEY)
            assert entry.payload[0].name == "Acme Ltd"
            assert entry.payload[0].price_band == "100-105"

    def test_unreadable_persisted_entry_is_a_miss(self):
        """Test that a persisted entry that fails validation is a miss."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "store.json"
            path.write_text(json.dumps({MARKET_STORAGE_KEY: {"data": "not a brief", "timestamp": 1}}))
            settings = Settings(cache=CacheSettings(persist_path=path))
            assert CacheService.create(settings).market.get(MARKET_STORAGE_KEY) is None

    def test_screener_is_not_persisted(self):
        """Test that screener results last for the process only."""
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = Settings(cache=CacheSettings(persist_path=Path(tmpdir) / "store.json"))
            service = CacheService.create(settings)
            service.screener.put("psu banks", [ScreenerMatch(ticker="SBIN")])

            assert CacheService.create(settings).screener.get("psu banks") is None

    def test_screener_state(self):
        """Test that screener state pairs the raw query with its cached matches."""
        service = CacheService.create(Settings())
        assert service.screener_state() is None

        matches = [ScreenerMatch(ticker="SBIN")]
        service.screener.put("psu banks", matches)
        service.remember_screener_query("  PSU Banks ")

        state = service.screener_state()
        assert state.query == "  PSU Banks "
        assert state.data == matches
