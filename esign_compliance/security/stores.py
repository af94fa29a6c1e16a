"""
Storage for rate limit counters and per-user access patterns.

Policy code depends only on the abstract stores. The in-memory stores serve a
single process and guard their maps with a lock; the Redis stores rely on
atomic server-side operations so several instances share one view.
"""

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

import redis

from esign_compliance.infrastructure.redis.redis_client import RedisClientManager

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


# =============================================================================
# Counter Store
# =============================================================================

@dataclass
class CounterState:
    """A fixed-window counter."""

    count: int
    reset_at: float  # epoch seconds

    def seconds_until_reset(self, now: float) -> float:
        return max(0.0, self.reset_at - now)


class CounterStore(ABC):
    """Fixed-window counters keyed by string."""

    @abstractmethod
    def increment(self, key: str, window_seconds: float) -> CounterState:
        """
        Count one hit.

        The window starts with the first hit; a hit after the window has
        expired starts a new window at count 1.
        """

    @abstractmethod
    def get(self, key: str) -> Optional[CounterState]:
        """Current live counter, or None if absent or expired."""

    @abstractmethod
    def reset(self, key: str) -> None:
        pass

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        return 0


class InMemoryCounterStore(CounterStore):
    """Process-local counters."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._entries: Dict[str, CounterState] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, window_seconds: float) -> CounterState:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_at <= now:
                entry = CounterState(count=1, reset_at=now + window_seconds)
                self._entries[key] = entry
            else:
                entry.count += 1
            return CounterState(entry.count, entry.reset_at)

    def get(self, key: str) -> Optional[CounterState]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_at <= now:
                return None
            return CounterState(entry.count, entry.reset_at)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


# INCR and the first-hit PEXPIRE run atomically; also repairs keys that lost their TTL
_INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisCounterStore(CounterStore):
    """Counters shared across instances; Redis key expiry closes each window."""

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "esign",
        clock: Clock = time.time,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self._clock = clock
        self._increment = client.register_script(_INCREMENT_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:ratelimit:{key}"

    def increment(self, key: str, window_seconds: float) -> CounterState:
        window_ms = max(1, int(window_seconds * 1000))
        count, ttl_ms = self._increment(keys=[self._key(key)], args=[window_ms])
        return CounterState(
            count=int(count),
            reset_at=self._clock() + int(ttl_ms) / 1000.0,
        )

    def get(self, key: str) -> Optional[CounterState]:
        pipe = self.client.pipeline(transaction=False)
        pipe.get(self._key(key))
        pipe.pttl(self._key(key))
        value, ttl_ms = pipe.execute()
        if value is None or ttl_ms is None or int(ttl_ms) <= 0:
            return None
        return CounterState(count=int(value), reset_at=self._clock() + int(ttl_ms) / 1000.0)

    def reset(self, key: str) -> None:
        self.client.delete(self._key(key))


# =============================================================================
# Access Pattern Store
# =============================================================================

@dataclass
class AccessPattern:
    """What has been observed for one user within the pattern TTL."""

    user_id: str
    ip_addresses: Set[str] = field(default_factory=set)
    user_agents: Set[str] = field(default_factory=set)
    locations: Set[str] = field(default_factory=set)
    last_access: float = 0.0
    access_count: int = 0


@dataclass
class AccessSnapshot:
    """Pattern state right after recording one access."""

    pattern: AccessPattern
    # Accesses by this user from this IP inside the burst window, this one included
    recent_count: int


class AccessPatternStore(ABC):
    """Per-user access history used by the anomaly detector."""

    @abstractmethod
    def record_access(
        self,
        user_id: str,
        ip_address: str,
        user_agent: str,
        location: Optional[str],
        burst_window_seconds: float,
    ) -> AccessSnapshot:
        pass

    @abstractmethod
    def get_pattern(self, user_id: str) -> Optional[AccessPattern]:
        pass

    @abstractmethod
    def clear_pattern(self, user_id: str) -> None:
        pass

    def sweep(self, burst_window_seconds: float) -> int:
        return 0


class InMemoryAccessPatternStore(AccessPatternStore):
    """Process-local access patterns, dropped after `ttl_seconds` of inactivity."""

    def __init__(self, ttl_seconds: float = 24 * 60 * 60, clock: Clock = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._patterns: Dict[str, AccessPattern] = {}
        self._recent: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def record_access(
        self,
        user_id: str,
        ip_address: str,
        user_agent: str,
        location: Optional[str],
        burst_window_seconds: float,
    ) -> AccessSnapshot:
        now = self._clock()
        with self._lock:
            pattern = self._patterns.get(user_id)
            if pattern is None or now - pattern.last_access > self.ttl_seconds:
                pattern = AccessPattern(user_id=user_id)
                self._patterns[user_id] = pattern

            pattern.ip_addresses.add(ip_address)
            pattern.user_agents.add(user_agent)
            if location:
                pattern.locations.add(location)
            pattern.access_count += 1
            pattern.last_access = now

            access_key = f"{user_id}:{ip_address}"
            times = [t for t in self._recent.get(access_key, []) if now - t < burst_window_seconds]
            times.append(now)
            self._recent[access_key] = times

            return AccessSnapshot(pattern=_copy_pattern(pattern), recent_count=len(times))

    def get_pattern(self, user_id: str) -> Optional[AccessPattern]:
        with self._lock:
            pattern = self._patterns.get(user_id)
            return _copy_pattern(pattern) if pattern else None

    def clear_pattern(self, user_id: str) -> None:
        prefix = f"{user_id}:"
        with self._lock:
            self._patterns.pop(user_id, None)
            for key in [k for k in self._recent if k.startswith(prefix)]:
                del self._recent[key]

    def sweep(self, burst_window_seconds: float) -> int:
        now = self._clock()
        removed = 0
        with self._lock:
            for user_id in [
                u for u, p in self._patterns.items() if now - p.last_access > self.ttl_seconds
            ]:
                del self._patterns[user_id]
                removed += 1

            for key, times in list(self._recent.items()):
                live = [t for t in times if now - t < burst_window_seconds]
                if live:
                    self._recent[key] = live
                else:
                    del self._recent[key]
        return removed


class RedisAccessPatternStore(AccessPatternStore):
    """
    Access patterns in Redis.

    Each user has three sets and a hash, all expiring after the pattern TTL;
    bursts are a sorted set of timestamps per (user, ip).
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "esign",
        ttl_seconds: int = 24 * 60 * 60,
        clock: Clock = time.time,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _keys(self, user_id: str) -> Dict[str, str]:
        base = f"{self.key_prefix}:access:{user_id}"
        return {
            "ips": f"{base}:ips",
            "agents": f"{base}:agents",
            "locations": f"{base}:locations",
            "meta": f"{base}:meta",
        }

    def _recent_key(self, user_id: str, ip_address: str) -> str:
        return f"{self.key_prefix}:access:{user_id}:recent:{ip_address}"

    def record_access(
        self,
        user_id: str,
        ip_address: str,
        user_agent: str,
        location: Optional[str],
        burst_window_seconds: float,
    ) -> AccessSnapshot:
        now = self._clock()
        keys = self._keys(user_id)
        recent_key = self._recent_key(user_id, ip_address)

        pipe = self.client.pipeline(transaction=True)
        pipe.sadd(keys["ips"], ip_address)
        pipe.sadd(keys["agents"], user_agent)
        if location:
            pipe.sadd(keys["locations"], location)
        pipe.hincrby(keys["meta"], "access_count", 1)
        pipe.hset(keys["meta"], "last_access", now)
        for key in keys.values():
            pipe.expire(key, self.ttl_seconds)

        pipe.zremrangebyscore(recent_key, "-inf", now - burst_window_seconds)
        pipe.zadd(recent_key, {f"{now:.6f}:{uuid.uuid4().hex[:8]}": now})
        pipe.zcard(recent_key)
        pipe.expire(recent_key, max(1, int(burst_window_seconds) + 1))
        results = pipe.execute()

        recent_count = int(results[-2])
        pattern = self.get_pattern(user_id) or AccessPattern(user_id=user_id)
        return AccessSnapshot(pattern=pattern, recent_count=recent_count)

    def get_pattern(self, user_id: str) -> Optional[AccessPattern]:
        keys = self._keys(user_id)
        pipe = self.client.pipeline(transaction=False)
        pipe.smembers(keys["ips"])
        pipe.smembers(keys["agents"])
        pipe.smembers(keys["locations"])
        pipe.hgetall(keys["meta"])
        ips, agents, locations, meta = pipe.execute()

        if not meta:
            return None
        return AccessPattern(
            user_id=user_id,
            ip_addresses=set(ips),
            user_agents=set(agents),
            locations=set(locations),
            last_access=float(meta.get("last_access", 0)),
            access_count=int(meta.get("access_count", 0)),
        )

    def clear_pattern(self, user_id: str) -> None:
        keys = list(self._keys(user_id).values())
        keys.extend(self.client.scan_iter(match=f"{self.key_prefix}:access:{user_id}:recent:*"))
        self.client.delete(*keys)


def _copy_pattern(pattern: AccessPattern) -> AccessPattern:
    return AccessPattern(
        user_id=pattern.user_id,
        ip_addresses=set(pattern.ip_addresses),
        user_agents=set(pattern.user_agents),
        locations=set(pattern.locations),
        last_access=pattern.last_access,
        access_count=pattern.access_count,
    )


# =============================================================================
# Factories
# =============================================================================

def create_counter_store(backend: str) -> CounterStore:
    if backend == "redis":
        manager = RedisClientManager.get_instance()
        return RedisCounterStore(manager.client, key_prefix=manager.config.key_prefix)
    return InMemoryCounterStore()


def create_access_pattern_store(backend: str, ttl_seconds: int) -> AccessPatternStore:
    if backend == "redis":
        manager = RedisClientManager.get_instance()
        return RedisAccessPatternStore(
            manager.client,
            key_prefix=manager.config.key_prefix,
            ttl_seconds=ttl_seconds,
        )
    return InMemoryAccessPatternStore(ttl_seconds=ttl_seconds)
