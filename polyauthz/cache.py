"""
Decision cache for polyauthz

Decisions are memoized per (subject, resource, action, policy version,
attribute fingerprint). Entries remember the policy version they were
computed under; a lookup made after the Policy Model moved past that
version treats the entry as a miss and drops it.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional
import structlog

from .policy.models import Decision
from .utils.hashing import create_data_fingerprint

logger = structlog.get_logger(__name__)


def build_cache_key(subject_id: str, resource_id: str, action: str,
                    policy_version: int, fingerprint: str) -> str:
    """Hash of the request identity, policy version and attribute fingerprint"""
    return create_data_fingerprint({
        "subject_id": subject_id,
        "resource_id": resource_id,
        "action": action,
        "policy_version": policy_version,
        "fingerprint": fingerprint,
    })


@dataclass
class _CacheEntry:
    decision: Decision
    version: int
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    stale: int = 0
    expired: int = 0
    evictions: int = 0


class DecisionCache:
    """Bounded, thread-safe TTL cache of decisions"""

    def __init__(self, ttl_seconds: float = 30.0, max_entries: int = 10_000,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str, current_version: Optional[int] = None) -> Optional[Decision]:
        """Cached decision, or None on miss, expiry or stale version"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None

            if current_version is not None and entry.version < current_version:
                del self._entries[key]
                self.stats.stale += 1
                self.stats.misses += 1
                return None

            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self.stats.expired += 1
                self.stats.misses += 1
                return None

            self._entries.move_to_end(key)
            self.stats.hits += 1
            return entry.decision

    def put(self, key: str, decision: Decision, version: int, ttl: Optional[float] = None) -> None:
        """Store a decision stamped with the policy version it was computed under"""
        ttl = self.ttl_seconds if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = _CacheEntry(decision, version, self._clock() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self.stats.evictions += 1

    def invalidate_entities(self, subject_id: Optional[str] = None,
                            resource_id: Optional[str] = None) -> int:
        """Drop entries for a subject and/or resource whose attributes changed"""
        with self._lock:
            doomed = [
                key for key, entry in self._entries.items()
                if (subject_id is not None and entry.decision.subject_id == subject_id)
                or (resource_id is not None and entry.decision.resource_id == resource_id)
            ]
            for key in doomed:
                del self._entries[key]

        if doomed:
            logger.debug("Invalidated cached decisions", count=len(doomed),
                         subject_id=subject_id, resource_id=resource_id)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
