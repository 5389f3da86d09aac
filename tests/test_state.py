"""
tests/test_state.py
===================
Session store: deep-merge semantics, LRU + TTL eviction, patch / update.
"""
import threading

import pytest

from audit_platform.state import (
    EvictionPolicy,
    SessionKey,
    SessionStore,
    deep_merge,
    default_session_state,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key():
    return SessionKey("acme", "s1")


# ─── Deep Merge ───────────────────────────────────────────────────────────────

class TestDeepMerge:
    def test_objects_merge_arrays_replace(self):
        base = {"a": {"b": 1, "c": 2}, "items": [1, 2, 3]}
        patch = {"a": {"b": 10}, "items": [9]}
        assert deep_merge(base, patch) == {"a": {"b": 10, "c": 2}, "items": [9]}

    def test_inputs_not_mutated(self):
        base = {"a": {"b": 1}}
        patch = {"a": {"c": [1]}}
        out = deep_merge(base, patch)
        out["a"]["c"].append(2)
        assert base == {"a": {"b": 1}}
        assert patch == {"a": {"c": [1]}}

    def test_scalar_replaces_object(self):
        assert deep_merge({"a": {"b": 1}}, {"a": None}) == {"a": None}

    def test_object_replaces_scalar(self):
        assert deep_merge({"a": 5}, {"a": {"x": 1}}) == {"a": {"x": 1}}

    def test_new_keys_added(self):
        assert deep_merge({}, {"context": {"userNotes": "hi"}}) == {"context": {"userNotes": "hi"}}

    def test_non_mapping_roots(self):
        assert deep_merge([1, 2], [3]) == [3]
        assert deep_merge(1, "x") == "x"


# ─── Eviction ─────────────────────────────────────────────────────────────────

class TestEvictionPolicy:
    def test_ttl(self, clock):
        policy = EvictionPolicy(ttl_seconds=10, clock=clock)
        clock.now = 10
        assert not policy.is_expired(0)
        clock.now = 10.5
        assert policy.is_expired(0)

    def test_zero_disables_limits(self, clock):
        policy = EvictionPolicy(max_entries=0, ttl_seconds=0, clock=clock)
        clock.now = 1e9
        assert not policy.is_expired(0)
        assert not policy.over_capacity(10 ** 6)


# ─── Store ────────────────────────────────────────────────────────────────────

class TestSessionStore:
    def test_lazy_default_state(self, key):
        store = SessionStore()
        state = store.get(key)
        defaults = default_session_state()
        assert {k: v for k, v in state.items() if not k.endswith("At")} == \
               {k: v for k, v in defaults.items() if not k.endswith("At")}
        assert key in store

    def test_get_returns_copy(self, key):
        store = SessionStore()
        store.get(key)["actionItems"].append({"id": "x"})
        assert store.get(key)["actionItems"] == []

    def test_tenants_isolated(self):
        store = SessionStore()
        store.patch(SessionKey("t1", "s"), {"context": {"entities": "A"}})
        assert store.get(SessionKey("t2", "s"))["context"] == {}

    def test_patch_merges(self, key):
        store = SessionStore()
        store.patch(key, {"context": {"documentPurpose": "Audit"}})
        state = store.patch(key, {"context": {"userNotes": "check leases"}, "periods": [{"periodLabel": "Q1"}]})
        assert state["context"] == {"documentPurpose": "Audit", "userNotes": "check leases"}
        assert store.get(key)["periods"] == [{"periodLabel": "Q1"}]

    def test_patch_replaces_arrays(self, key):
        store = SessionStore()
        store.patch(key, {"periods": [{"periodLabel": "Q1"}, {"periodLabel": "Q2"}]})
        store.patch(key, {"periods": [{"periodLabel": "Q3"}]})
        assert store.get(key)["periods"] == [{"periodLabel": "Q3"}]

    def test_update_replaces_wholesale(self, key):
        store = SessionStore()
        store.patch(key, {"analysis": {"risks": ["a"], "opportunities": ["b"]}})
        store.update(key, lambda s: {**s, "analysis": {"risks": ["c"]}})
        assert store.get(key)["analysis"] == {"risks": ["c"]}

    def test_put_and_delete(self, key):
        store = SessionStore()
        store.put(key, {"periods": []})
        assert store.get(key) == {"periods": []}
        assert store.delete(key) is True
        assert store.delete(key) is False
        assert key not in store

    def test_lru_capacity(self, clock):
        store = SessionStore(EvictionPolicy(max_entries=2, ttl_seconds=0, clock=clock))
        k1, k2, k3 = (SessionKey("t", s) for s in ("1", "2", "3"))
        store.get(k1)
        store.get(k2)
        store.get(k1)  # k2 is now least recently used
        store.get(k3)
        assert k1 in store
        assert k2 not in store
        assert k3 in store
        assert len(store) == 2

    def test_idle_ttl(self, clock, key):
        store = SessionStore(EvictionPolicy(max_entries=0, ttl_seconds=60, clock=clock))
        store.patch(key, {"context": {"entities": "A"}})
        clock.now = 30
        assert store.get(key)["context"] == {"entities": "A"}
        clock.now = 89
        assert key in store
        clock.now = 200
        assert key not in store
        assert store.get(key)["context"] == {}


class TestConcurrentWrites:
    THREADS = 8
    ROUNDS = 50

    def _run(self, target):
        threads = [threading.Thread(target=target, args=(i,)) for i in range(self.THREADS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_update_increments_are_not_lost(self, key):
        store = SessionStore()

        def worker(_):
            for _ in range(self.ROUNDS):
                store.update(key, lambda s: {**s, "context": {"n": s["context"].get("n", 0) + 1}})

        self._run(worker)
        assert store.get(key)["context"]["n"] == self.THREADS * self.ROUNDS

    def test_patches_from_many_threads_all_land(self, key):
        store = SessionStore()

        def worker(i):
            for j in range(self.ROUNDS):
                store.patch(key, {"context": {f"t{i}_{j}": j}})

        self._run(worker)
        context = store.get(key)["context"]
        assert len(context) == self.THREADS * self.ROUNDS
        assert context["t7_49"] == 49
