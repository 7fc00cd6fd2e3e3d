"""
Tests for the cache evictor and key store adapters.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from valkey.exceptions import (
    ConnectionError,
    DataError,
    NoPermissionError,
    ReadOnlyError,
    ResponseError,
    TimeoutError,
)

from pilot_catalog.cache.config import ValkeyConfig, ValkeyConnectionError
from pilot_catalog.cache.client import ValkeyClient
from pilot_catalog.cache.evictor import CacheEvictor
from pilot_catalog.cache.keys import CacheEndpoint, CachePattern
from pilot_catalog.cache.store import InMemoryKeyStore, KeyStore, ValkeyKeyStore
from pilot_catalog.errors import CacheCommandError, CacheUnavailableError, MalformedPatternError


def seeded_store():
    return InMemoryKeyStore({
        "/single_product:500:en": "{}",
        "/single_product:500:es": "{}",
        "/single_product:5001:en": "{}",
        "/product_listing:3:fr": "[]",
        "/product_listing:12:fr": "[]",
    })


class TestCacheEvictor:
    """Bulk eviction by concrete pattern."""

    @pytest.mark.asyncio
    async def test_evicts_union_of_matches(self):
        store = seeded_store()
        evictor = CacheEvictor(store)

        deleted = await evictor.evict({"/single_product:500:en", "/product_listing:3:fr"})

        assert deleted == 2
        assert "/single_product:500:en" not in store
        assert "/product_listing:3:fr" not in store
        assert "/single_product:5001:en" in store
        assert store.delete_calls == 1

    @pytest.mark.asyncio
    async def test_overlapping_patterns_delete_once(self):
        store = seeded_store()
        deleted = await CacheEvictor(store).evict({"/single_product:*:en", "/single_product:500:en"})
        assert deleted == 2
        assert store.delete_calls == 1

    @pytest.mark.asyncio
    async def test_no_matches_skips_delete(self):
        store = seeded_store()
        evictor = CacheEvictor(store)

        deleted = await evictor.evict({"/tech_article:99:pt"})

        assert deleted == 0
        assert store.list_calls == 1
        assert store.delete_calls == 0
        assert evictor.stats.skipped_deletes == 1

    @pytest.mark.asyncio
    async def test_eviction_is_idempotent(self):
        store = seeded_store()
        evictor = CacheEvictor(store)
        patterns = {"/single_product:500:*"}

        assert await evictor.evict(patterns) == 2
        assert await evictor.evict(patterns) == 0
        assert store.delete_calls == 1

    @pytest.mark.asyncio
    async def test_empty_pattern_set(self):
        store = seeded_store()
        assert await CacheEvictor(store).evict([]) == 0
        assert store.list_calls == 0

    @pytest.mark.asyncio
    async def test_accepts_concrete_cache_patterns(self):
        store = seeded_store()
        pattern = CachePattern(CacheEndpoint.PRODUCT_LISTING, "12", "fr")
        assert await CacheEvictor(store).evict([pattern]) == 1

    @pytest.mark.asyncio
    async def test_unresolved_locale_rejected(self):
        store = seeded_store()
        with pytest.raises(MalformedPatternError):
            await CacheEvictor(store).evict({"/single_product:500:{locale}"})
        with pytest.raises(MalformedPatternError):
            await CacheEvictor(store).evict([CachePattern(CacheEndpoint.SINGLE_PRODUCT, "500")])
        assert store.list_calls == 0
        assert len(store) == 5

    @pytest.mark.asyncio
    async def test_invalid_pattern_rejected(self):
        with pytest.raises(MalformedPatternError) as exc_info:
            await CacheEvictor(seeded_store()).evict({"/single product:1:en"})
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        store = Mock()
        store.list_keys = AsyncMock(side_effect=CacheUnavailableError("down"))
        evictor = CacheEvictor(store)

        with pytest.raises(CacheUnavailableError):
            await evictor.evict({"/content:1:en"})
        assert evictor.stats.error_count == 1

    @pytest.mark.asyncio
    async def test_stats(self):
        evictor = CacheEvictor(seeded_store())
        await evictor.evict({"/single_product:500:*", "/product_listing:*:fr"})

        stats = evictor.stats.to_dict()
        assert stats["evictions"] == 1
        assert stats["patterns"] == 2
        assert stats["keys_deleted"] == 4


class TestKeyStores:
    """Store adapters."""

    def test_protocol_conformance(self):
        assert isinstance(InMemoryKeyStore(), KeyStore)
        assert isinstance(ValkeyKeyStore(Mock()), KeyStore)

    @pytest.mark.asyncio
    async def test_in_memory_glob_matching(self):
        store = seeded_store()
        assert sorted(await store.list_keys("/single_product:*50*:en")) == [
            "/single_product:5001:en",
            "/single_product:500:en",
        ]

    @pytest.mark.asyncio
    async def test_valkey_store_delegates_to_client(self):
        client = Mock()
        client.scan_keys = AsyncMock(return_value=["/content:1:en"])
        client.delete_keys = AsyncMock(return_value=1)
        store = ValkeyKeyStore(client)

        assert await store.list_keys("/content:*:en") == ["/content:1:en"]
        assert await store.delete_keys(["/content:1:en"]) == 1
        client.scan_keys.assert_awaited_once_with("/content:*:en")

    @pytest.mark.asyncio
    async def test_valkey_store_skips_empty_delete(self):
        client = Mock()
        client.delete_keys = AsyncMock()
        assert await ValkeyKeyStore(client).delete_keys([]) == 0
        client.delete_keys.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ConnectionError("connection refused"),
        TimeoutError("timed out"),
        ValkeyConnectionError("Client not connected"),
        ReadOnlyError("READONLY You can't write against a read only replica."),
    ])
    async def test_valkey_errors_become_cache_unavailable(self, error):
        client = Mock()
        client.scan_keys = AsyncMock(side_effect=error)
        client.delete_keys = AsyncMock(side_effect=error)
        store = ValkeyKeyStore(client)

        with pytest.raises(CacheUnavailableError) as exc_info:
            await store.list_keys("/content:*:en")
        assert exc_info.value.retryable

        with pytest.raises(CacheUnavailableError):
            await store.delete_keys(["/content:1:en"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ResponseError("ERR unknown command"),
        NoPermissionError("NOPERM this user has no permissions to run the 'del' command"),
        DataError("Invalid input of type: 'NoneType'"),
    ])
    async def test_valkey_error_replies_become_command_errors(self, error):
        client = Mock()
        client.scan_keys = AsyncMock(side_effect=error)
        client.delete_keys = AsyncMock(side_effect=error)
        store = ValkeyKeyStore(client)

        with pytest.raises(CacheCommandError) as exc_info:
            await store.list_keys("/content:*:en")
        assert not exc_info.value.retryable

        with pytest.raises(CacheCommandError):
            await store.delete_keys(["/content:1:en"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pattern,expected", [
        ("/content:[^1]:en", ["/content:*:en", "/content:2:en", "/content:a:en"]),
        ("/content:[1-2]:en", ["/content:1:en", "/content:2:en"]),
        ("/content:[2-1]:en", ["/content:1:en", "/content:2:en"]),
        ("/content:\\*:en", ["/content:*:en"]),
        ("/content:[\\*]:en", ["/content:*:en"]),
        ("/content:?:en", ["/content:*:en", "/content:1:en", "/content:2:en", "/content:a:en"]),
        ("/content:[]:en", []),
    ])
    async def test_in_memory_follows_valkey_globs(self, pattern, expected):
        store = InMemoryKeyStore({
            "/content:1:en": "{}",
            "/content:2:en": "{}",
            "/content:a:en": "{}",
            "/content:*:en": "{}",
            "/content:!:es": "{}",
        })
        assert sorted(await store.list_keys(pattern)) == sorted(expected)


class TestValkeyClientKeyOperations:
    """SCAN and DEL through the client wrapper."""

    def setup_method(self):
        self.client = ValkeyClient(ValkeyConfig(scan_count=250))
        self.raw = Mock()
        self.client._client = self.raw
        self.client._is_connected = True
        self.client.ensure_connection = AsyncMock()

    @pytest.mark.asyncio
    async def test_scan_keys_uses_configured_count(self):
        self.raw.scan_iter.return_value = iter(["/content:1:en", "/content:2:en"])

        keys = await self.client.scan_keys("/content:*:en")

        assert keys == ["/content:1:en", "/content:2:en"]
        self.raw.scan_iter.assert_called_once_with(match="/content:*:en", count=250)

    @pytest.mark.asyncio
    async def test_delete_keys_single_call(self):
        self.raw.delete.return_value = 2
        assert await self.client.delete_keys(["/a:1:en", "/b:2:en"]) == 2
        self.raw.delete.assert_called_once_with("/a:1:en", "/b:2:en")

    @pytest.mark.asyncio
    async def test_delete_no_keys(self):
        assert await self.client.delete_keys([]) == 0
        self.raw.delete.assert_not_called()


class TestValkeyClientReconnect:
    """Connection recovery around key operations."""

    def make_client(self, stale_ping_error):
        client = ValkeyClient(ValkeyConfig(health_check_interval=0))
        stale = Mock()
        stale.ping.side_effect = stale_ping_error
        client._client = stale
        client._is_connected = True
        return client

    @pytest.mark.asyncio
    async def test_failed_reconnect_raises_without_backoff(self):
        client = self.make_client(ConnectionError("connection reset"))
        fresh = Mock()
        fresh.ping.side_effect = ConnectionError("connection refused")

        with patch("pilot_catalog.cache.client.ConnectionPool") as pool_cls, \
                patch("pilot_catalog.cache.client.valkey.Valkey", return_value=fresh), \
                patch("pilot_catalog.cache.client.asyncio") as mock_asyncio:
            mock_asyncio.sleep = AsyncMock()

            with pytest.raises(CacheUnavailableError):
                await ValkeyKeyStore(client).list_keys("/content:*:en")

        assert pool_cls.call_count == 1
        mock_asyncio.sleep.assert_not_awaited()
        assert not client.is_connected
        fresh.scan_iter.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_reconnect_then_scan(self):
        client = self.make_client(TimeoutError("timed out"))
        fresh = Mock()
        fresh.ping.return_value = True
        fresh.scan_iter.return_value = iter(["/content:1:en"])

        with patch("pilot_catalog.cache.client.ConnectionPool"), \
                patch("pilot_catalog.cache.client.valkey.Valkey", return_value=fresh):
            keys = await client.scan_keys("/content:*:en")

        assert keys == ["/content:1:en"]
        assert client.is_connected
        fresh.scan_iter.assert_called_once_with(match="/content:*:en", count=500)

    @pytest.mark.asyncio
    async def test_connect_backs_off_between_attempts(self):
        client = ValkeyClient(ValkeyConfig())
        fresh = Mock()
        fresh.ping.side_effect = ConnectionError("connection refused")

        with patch("pilot_catalog.cache.client.ConnectionPool") as pool_cls, \
                patch("pilot_catalog.cache.client.valkey.Valkey", return_value=fresh), \
                patch("pilot_catalog.cache.client.asyncio") as mock_asyncio:
            mock_asyncio.sleep = AsyncMock()

            with pytest.raises(ValkeyConnectionError):
                await client.connect()

        assert pool_cls.call_count == 5
        assert [c.args[0] for c in mock_asyncio.sleep.await_args_list] == [1.0, 2.0, 4.0, 8.0]
