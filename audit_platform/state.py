"""
audit_platform/state.py
=======================
Process-local session state keyed by (tenant, session).

State is a plain JSON tree. Patches are applied with ``deep_merge``: objects
merge key-wise, arrays and scalars are replaced wholesale. The store bounds
memory with an injected EvictionPolicy (LRU capacity + idle TTL) and
serializes read-modify-write patches per key.
"""
from __future__ import annotations
import copy
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

JsonTree = Any


@dataclass(frozen=True)
class SessionKey:
    tenant_id: str
    session_id: str

    @property
    def composite(self) -> str:
        return f"{self.tenant_id}:{self.session_id}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_session_state() -> Dict[str, Any]:
    now = _now_iso()
    return {
        "periods": [],
        "financialMetrics": None,
        "anomalies": None,
        "analysis": None,
        "actionItems": [],
        "executiveSummary": None,
        "context": {},
        "tokenUsage": {
            "promptTokens": 0,
            "completionTokens": 0,
            "totalTokens": 0,
            "requests": 0,
        },
        "createdAt": now,
        "updatedAt": now,
    }


# ─── Deep Merge ───────────────────────────────────────────────────────────────

def deep_merge(base: JsonTree, patch: JsonTree) -> JsonTree:
    """
    Merge ``patch`` into ``base`` without mutating either.
    Only object/object pairs recurse; anything else (arrays included) is
    replaced by the patch value.
    """
    if isinstance(base, Mapping) and isinstance(patch, Mapping):
        merged = {k: copy.deepcopy(v) for k, v in base.items()}
        for key, val in patch.items():
            if key in merged:
                merged[key] = deep_merge(merged[key], val)
            else:
                merged[key] = copy.deepcopy(val)
        return merged
    return copy.deepcopy(patch)


# ─── Eviction ─────────────────────────────────────────────────────────────────

class EvictionPolicy:
    """
    LRU capacity with an idle time-to-live.

    Args:
        max_entries: Maximum sessions kept; least recently used go first (0 = unbounded)
        ttl_seconds: Idle lifetime of a session (0 = never expires)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(self, max_entries: int = 1000, ttl_seconds: float = 3600.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def is_expired(self, last_access: float) -> bool:
        return bool(self.ttl_seconds) and self.clock() - last_access > self.ttl_seconds

    def over_capacity(self, size: int) -> bool:
        return bool(self.max_entries) and size > self.max_entries


# ─── Store ────────────────────────────────────────────────────────────────────

class SessionStore:
    """
    In-memory session store with get/put/delete/patch keyed by SessionKey.

    ``get`` lazily creates a fresh state on first access. Values handed out
    are deep copies, so callers cannot mutate stored state behind the lock.
    """

    def __init__(self, policy: Optional[EvictionPolicy] = None):
        self._policy = policy or EvictionPolicy()
        self._entries: "OrderedDict[str, Tuple[Dict[str, Any], float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    def __contains__(self, key: SessionKey) -> bool:
        with self._lock:
            self._purge_expired()
            return key.composite in self._entries

    def _purge_expired(self) -> None:
        expired = [k for k, (_, ts) in self._entries.items() if self._policy.is_expired(ts)]
        for k in expired:
            del self._entries[k]
            self._key_locks.pop(k, None)
            logger.debug("Session %s expired", k)

    def _evict_overflow(self) -> None:
        while self._policy.over_capacity(len(self._entries)):
            k, _ = self._entries.popitem(last=False)
            self._key_locks.pop(k, None)
            logger.info("Session %s evicted (capacity %d)", k, self._policy.max_entries)

    def _key_lock(self, composite: str) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(composite, threading.Lock())

    def get(self, key: SessionKey) -> Dict[str, Any]:
        with self._lock:
            self._purge_expired()
            entry = self._entries.get(key.composite)
            if entry is None:
                state = default_session_state()
                logger.debug("Session %s created", key.composite)
            else:
                state = entry[0]
            self._entries[key.composite] = (state, self._policy.clock())
            self._entries.move_to_end(key.composite)
            self._evict_overflow()
            return copy.deepcopy(state)

    def put(self, key: SessionKey, state: Mapping[str, Any]) -> None:
        with self._lock:
            self._purge_expired()
            self._entries[key.composite] = (copy.deepcopy(dict(state)), self._policy.clock())
            self._entries.move_to_end(key.composite)
            self._evict_overflow()

    def delete(self, key: SessionKey) -> bool:
        with self._lock:
            self._key_locks.pop(key.composite, None)
            return self._entries.pop(key.composite, None) is not None

    def patch(self, key: SessionKey, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """Read → deep-merge → write, serialized per session key."""
        with self._key_lock(key.composite):
            current = self.get(key)
            merged = deep_merge(current, patch)
            merged["updatedAt"] = _now_iso()
            self.put(key, merged)
            return merged

    def update(self, key: SessionKey, fn: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
        """
        Replace the state with ``fn(current)`` under the per-key lock.
        Unlike ``patch``, top-level values returned by ``fn`` are taken as-is.
        """
        with self._key_lock(key.composite):
            new_state = dict(fn(self.get(key)))
            new_state["updatedAt"] = _now_iso()
            self.put(key, new_state)
            return new_state
