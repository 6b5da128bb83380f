#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Cache!
Process-wide in-memory store of API responses with a per-entry time to live.
Entries are scoped by tenant so two tenants never share a cached response.
"""

import hashlib
import json
import threading
import time

from collections import namedtuple

TENANT_ID_KEY = "XdrTenantId"

CacheKey = namedtuple("CacheKey", ["tenant_id", "name"])


class CacheEntry(object):
    __slots__ = ("value", "cached_at", "not_valid_after")

    def __init__(self, value, cached_at, not_valid_after):
        self.value = value
        self.cached_at = cached_at
        self.not_valid_after = not_valid_after

    def is_valid(self, now=None):
        if now is None:
            now = time.time()
        return now < self.not_valid_after

    def __repr__(self):
        return f"CacheEntry(value={self.value!r}, cached_at={self.cached_at}, not_valid_after={self.not_valid_after})"


class TtlCache(object):
    """
    TTL cache keyed by (tenant id, logical name).

    Expired entries are never swept. They stay inert until overwritten or cleared,
    and get() hands them back so the caller decides what "valid" means.
    """

    def __init__(self, clock=time.time):
        self.clock = clock
        self._store = {}
        self._lock = threading.Lock()

    def _compose(self, key, tenant_id, scoped):
        if tenant_id is not None:
            return CacheKey(tenant_id, key)
        if not scoped or key == TENANT_ID_KEY:
            return CacheKey(None, key)
        # The tenant entry is used even past its TTL, the tenant of a session does not change
        tenant = self._store.get(CacheKey(None, TENANT_ID_KEY))
        if tenant is not None and tenant.value:
            return CacheKey(tenant.value, key)
        return CacheKey(None, key)

    def get(self, key, tenant_id=None, scoped=True):
        """
        Return the CacheEntry stored for key, or None on a miss.

        :param key: logical cache key
        :param tenant_id: explicit tenant scope, defaults to the cached tenant id
        :param scoped: set to False for session level keys that ignore the tenant
        """
        with self._lock:
            return self._store.get(self._compose(key, tenant_id, scoped))

    def get_valid(self, key, tenant_id=None, scoped=True):
        """Return the cached value when it has not expired yet, otherwise None."""
        entry = self.get(key, tenant_id=tenant_id, scoped=scoped)
        if entry is not None and entry.is_valid(self.clock()):
            return entry.value
        return None

    def set(self, key, value, ttl_minutes, tenant_id=None, scoped=True):
        now = self.clock()
        entry = CacheEntry(value, now, now + ttl_minutes * 60)
        with self._lock:
            self._store[self._compose(key, tenant_id, scoped)] = entry

    def clear(self, key=None, tenant_id=None, scoped=True):
        with self._lock:
            if key is None:
                self._store.clear()
            else:
                self._store.pop(self._compose(key, tenant_id, scoped), None)

    def keys(self):
        with self._lock:
            return list(self._store.keys())

    def __len__(self):
        with self._lock:
            return len(self._store)


def cache_key_for(name, **params):
    """Suffix a logical name with a short hash of the call parameters."""
    digest = hashlib.sha256(json.dumps(params, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"{name}_{digest[:16]}"
