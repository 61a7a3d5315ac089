"""Tests for the Oracle price cache."""

from oracle.cache import PriceCache
from fakes import FakeClock


class TestPriceCache:
    """Test suite for PriceCache."""

    def test_miss(self):
        """Test unknown keys miss."""
        cache = PriceCache("okx-dex")
        assert cache.get(("okx-dex", "price", "1", "0xabc")) is None
        assert cache.get_stats()["misses"] == 1

    def test_hit_within_ttl(self):
        """Test a value is returned unchanged within its TTL."""
        clock = FakeClock()
        cache = PriceCache("okx-dex", clock=clock)
        key = PriceCache.price_key("okx-dex", "501", "So11111111111111111111111111111111111111112")
        value = {"price": 150.0}

        cache.set(key, value, ttl_ms=60_000)
        clock.advance(59.9)

        assert cache.get(key) is value
        assert cache.get_stats()["hits"] == 1

    def test_expired_entry_removed_on_read(self):
        """Test entries past their TTL are deleted when read."""
        clock = FakeClock()
        cache = PriceCache("okx-dex", clock=clock)
        key = ("okx-dex", "price", "1", "0xabc")

        cache.set(key, 1.0, ttl_ms=1000)
        assert len(cache) == 1
        clock.advance(1.0)

        assert cache.get(key) is None
        assert len(cache) == 0
        assert cache.get_stats()["expired"] == 1

    def test_default_ttl(self):
        """Test the default TTL applies when none is given."""
        clock = FakeClock()
        cache = PriceCache("okx-dex", default_ttl_ms=500, clock=clock)
        cache.set(("k",), "v")

        clock.advance(0.4)
        assert cache.get(("k",)) == "v"
        clock.advance(0.2)
        assert cache.get(("k",)) is None

    def test_overwrite_refreshes_timestamp(self):
        """Test a write replaces the entry with a fresh timestamp."""
        clock = FakeClock()
        cache = PriceCache("okx-dex", clock=clock)
        key = ("k",)

        cache.set(key, "old", ttl_ms=1000)
        clock.advance(0.8)
        cache.set(key, "new", ttl_ms=1000)
        clock.advance(0.8)

        assert cache.get(key) == "new"

    def test_price_key_normalizes_evm_case(self):
        """Test EVM addresses share a key regardless of case."""
        upper = PriceCache.price_key("okx-dex", "1", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48")
        lower = PriceCache.price_key("okx-dex", "1", "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48")
        assert upper == lower

    def test_price_key_keeps_solana_case(self):
        """Test base58 addresses stay case sensitive."""
        a = PriceCache.price_key("okx-dex", "501", "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN")
        b = PriceCache.price_key("okx-dex", "501", "jupyiwryjfskupiha7hker8vutaefoSybkedznsdvcn")
        assert a != b

    def test_endpoint_key_param_order(self):
        """Test endpoint keys ignore parameter order."""
        a = PriceCache.endpoint_key("okx-cex", "/tickers", {"instType": "SPOT", "uly": "x"})
        b = PriceCache.endpoint_key("okx-cex", "/tickers", {"uly": "x", "instType": "SPOT"})
        assert a == b

    def test_invalidate_and_clear(self):
        """Test explicit removal."""
        cache = PriceCache("okx-dex")
        cache.set(("a",), 1)
        cache.set(("b",), 2)

        assert cache.invalidate(("a",)) is True
        assert cache.invalidate(("a",)) is False
        cache.clear()
        assert len(cache) == 0
