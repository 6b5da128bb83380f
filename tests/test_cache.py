"""
Unit tests for cache module
"""
import pytest

from xdrinternals.cache import TENANT_ID_KEY, CacheKey, TtlCache, cache_key_for


@pytest.fixture
def cache(clock):
    return TtlCache(clock=clock)


class TestTtlCache:
    """Test cases for TtlCache class"""

    def test_get_returns_value_right_after_set(self, cache, clock):
        cache.set("XdrAlerts", {"value": [1, 2]}, 30)

        entry = cache.get("XdrAlerts")
        assert entry.value == {"value": [1, 2]}
        assert entry.cached_at == clock.now
        assert entry.not_valid_after == clock.now + 30 * 60
        assert cache.get_valid("XdrAlerts") == {"value": [1, 2]}

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("XdrAlerts", "alerts", 30)
        clock.advance(30.5)

        assert cache.get_valid("XdrAlerts") is None

    def test_expired_entry_is_kept_until_overwritten(self, cache, clock):
        cache.set("XdrAlerts", "alerts", 1)
        clock.advance(2)

        entry = cache.get("XdrAlerts")
        assert entry is not None
        assert not entry.is_valid(clock())

    def test_validity_boundary_is_strict(self, cache, clock):
        cache.set("XdrAlerts", "alerts", 10)
        clock.advance(10)

        assert cache.get("XdrAlerts").is_valid(clock()) is False

    def test_miss_returns_none(self, cache):
        assert cache.get("Nothing") is None
        assert cache.get_valid("Nothing") is None

    def test_set_overwrites_unconditionally(self, cache, clock):
        cache.set("XdrAlerts", "old", 60)
        clock.advance(1)
        cache.set("XdrAlerts", "new", 5)

        entry = cache.get("XdrAlerts")
        assert entry.value == "new"
        assert entry.not_valid_after == clock.now + 5 * 60

    def test_explicit_tenants_do_not_collide(self, cache):
        cache.set("XdrDevices", "devices of a", 30, tenant_id="tenant-a")
        cache.set("XdrDevices", "devices of b", 30, tenant_id="tenant-b")

        assert cache.get_valid("XdrDevices", tenant_id="tenant-a") == "devices of a"
        assert cache.get_valid("XdrDevices", tenant_id="tenant-b") == "devices of b"

    def test_cached_tenant_scopes_implicit_keys(self, cache):
        cache.set(TENANT_ID_KEY, "tenant-a", 1440)
        cache.set("XdrDevices", "devices", 30)

        assert CacheKey("tenant-a", "XdrDevices") in cache.keys()
        assert cache.get_valid("XdrDevices", tenant_id="tenant-a") == "devices"
        assert cache.get_valid("XdrDevices", tenant_id="tenant-b") is None

    def test_tenant_key_itself_is_never_scoped(self, cache):
        cache.set(TENANT_ID_KEY, "tenant-a", 1440)

        assert CacheKey(None, TENANT_ID_KEY) in cache.keys()
        assert cache.get_valid(TENANT_ID_KEY) == "tenant-a"

    def test_switching_tenant_hides_previous_entries(self, cache):
        cache.set(TENANT_ID_KEY, "tenant-a", 1440)
        cache.set("XdrDevices", "devices of a", 30)
        cache.set(TENANT_ID_KEY, "tenant-b", 1440)

        assert cache.get_valid("XdrDevices") is None
        cache.set("XdrDevices", "devices of b", 30)
        assert cache.get_valid("XdrDevices", tenant_id="tenant-a") == "devices of a"
        assert cache.get_valid("XdrDevices") == "devices of b"

    def test_unscoped_keys_ignore_the_tenant(self, cache):
        cache.set(TENANT_ID_KEY, "tenant-a", 1440)
        cache.set("XdrXsrfToken", "token", 5, scoped=False)

        assert CacheKey(None, "XdrXsrfToken") in cache.keys()
        assert cache.get_valid("XdrXsrfToken", scoped=False) == "token"

    def test_clear_absent_key_is_a_no_op(self, cache):
        cache.set("XdrAlerts", "alerts", 30)
        cache.clear("Missing")

        assert len(cache) == 1

    def test_clear_single_key(self, cache):
        cache.set("XdrAlerts", "alerts", 30)
        cache.set("XdrDevices", "devices", 30)
        cache.clear("XdrAlerts")

        assert cache.get("XdrAlerts") is None
        assert cache.get_valid("XdrDevices") == "devices"

    def test_clear_everything(self, cache):
        cache.set(TENANT_ID_KEY, "tenant-a", 1440)
        cache.set("XdrAlerts", "alerts", 30)
        cache.set("XdrDevices", "devices", 30, tenant_id="tenant-b")
        cache.clear()

        assert len(cache) == 0
        assert cache.get("XdrAlerts") is None
        assert cache.get("XdrDevices", tenant_id="tenant-b") is None

    def test_default_clock_is_wall_time(self):
        cache = TtlCache()
        cache.set("XdrAlerts", "alerts", 1)

        assert cache.get_valid("XdrAlerts") == "alerts"


class TestCacheKeyFor:
    """Test cases for cache_key_for function"""

    def test_same_parameters_same_key(self):
        first = cache_key_for("XdrDeviceTimeline", device_id="abc", page_size=200)
        second = cache_key_for("XdrDeviceTimeline", page_size=200, device_id="abc")

        assert first == second
        assert first.startswith("XdrDeviceTimeline_")
        assert len(first) == len("XdrDeviceTimeline_") + 16

    def test_different_parameters_different_key(self):
        assert cache_key_for("XdrDeviceTimeline", device_id="abc") != cache_key_for("XdrDeviceTimeline", device_id="abd")
