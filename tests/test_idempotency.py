"""Idempotency store tests.

Tests:
- Key hashing and validation
- In-memory and store-backed records with TTL expiry
- Store-backed purge deletes expired records in batches
- First writer wins
- create_node replay returns the first result without duplicating
- A concurrent duplicate that loses the race gets the winner's result
"""

import pytest

from graphmem.commands.handlers import OP_CREATE_NODE, NodeCommandHandler
from graphmem.commands.models import CreateNodeCommand
from graphmem.db import keys
from graphmem.db.node_repository import StoreNodeRepository
from graphmem.domain.values import UserID
from graphmem.errors import ValidationError
from graphmem.idempotency import IdempotencyKey, InMemoryIdempotencyStore, StoreIdempotencyStore
from graphmem.retry import RetryPolicy
from graphmem.store.memory_backend import InMemoryStore
from graphmem.store.protocol import GUARD_ABSENT, Key

USER = "user-1"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BatchCountingStore(InMemoryStore):
    """Records the size of every batch_write call."""

    def __init__(self):
        super().__init__()
        self.batches: list[int] = []

    def batch_write(self, operations):
        self.batches.append(len(operations))
        return super().batch_write(operations)


class TestIdempotencyKey:
    def test_hashes_client_token(self):
        key = IdempotencyKey.for_request(USER, "CreateNode", "client-token-1")
        assert len(key.request_hash) == 64
        assert "client-token-1" not in key.request_hash
        assert key == IdempotencyKey.for_request(USER, "CreateNode", "client-token-1")

    def test_store_key_layout(self):
        key = IdempotencyKey.for_request(USER, "CreateNode", "t")
        assert key.store_key.pk == "IDEMPOTENCY#user-1#CreateNode"
        assert key.store_key.sk == key.request_hash

    @pytest.mark.parametrize("token", ["", "   ", "x" * 257])
    def test_rejects_bad_tokens(self, token):
        with pytest.raises(ValidationError):
            IdempotencyKey.for_request(USER, "CreateNode", token)


@pytest.fixture(params=["memory", "store"])
def idem(request):
    clock = FakeClock()
    if request.param == "memory":
        return InMemoryIdempotencyStore(ttl_seconds=60, clock=clock), clock
    return StoreIdempotencyStore(InMemoryStore(), ttl_seconds=60, clock=clock), clock


class TestRecords:
    """Behaviour shared by both implementations."""

    def test_miss_then_hit(self, idem):
        store, _ = idem
        key = IdempotencyKey.for_request(USER, "CreateNode", "t1")
        assert store.get(key) == (None, False)
        store.store(key, {"node": {"node_id": "n1"}})
        assert store.get(key) == ({"node": {"node_id": "n1"}}, True)

    def test_first_writer_wins(self, idem):
        store, _ = idem
        key = IdempotencyKey.for_request(USER, "CreateNode", "t1")
        store.store(key, {"v": 1})
        store.store(key, {"v": 2})
        assert store.get(key) == ({"v": 1}, True)

    def test_expired_record_is_absent(self, idem):
        store, clock = idem
        key = IdempotencyKey.for_request(USER, "CreateNode", "t1")
        store.store(key, {"v": 1})
        clock.now += 61
        assert store.get(key) == (None, False)
        store.store(key, {"v": 2})
        assert store.get(key) == ({"v": 2}, True)

    def test_keys_are_scoped_by_user(self, idem):
        store, _ = idem
        store.store(IdempotencyKey.for_request(USER, "CreateNode", "t1"), {"v": 1})
        assert store.get(IdempotencyKey.for_request("user-2", "CreateNode", "t1")) == (None, False)


class TestStoreBacked:
    def test_prepare_put_is_guarded(self):
        idem = StoreIdempotencyStore(InMemoryStore())
        op = idem.prepare_put(IdempotencyKey.for_request(USER, "CreateNode", "t"), {"v": 1})
        assert op.guard == GUARD_ABSENT
        assert op.item["TTL"] > 0

    def test_in_memory_does_not_fold(self):
        idem = InMemoryIdempotencyStore()
        assert idem.prepare_put(IdempotencyKey.for_request(USER, "CreateNode", "t"), {"v": 1}) is None

    def test_purge_expired(self):
        clock = FakeClock()
        idem = InMemoryIdempotencyStore(ttl_seconds=10, clock=clock)
        idem.store(IdempotencyKey.for_request(USER, "CreateNode", "a"), 1)
        clock.now += 11
        idem.store(IdempotencyKey.for_request(USER, "CreateNode", "b"), 2)
        assert idem.purge_expired() == 1
        assert len(idem) == 1

    def test_store_backed_purge_uses_batches(self):
        clock = FakeClock()
        backend = BatchCountingStore()
        idem = StoreIdempotencyStore(backend, ttl_seconds=10, clock=clock)
        for i in range(30):
            idem.store(IdempotencyKey.for_request(USER, "CreateNode", f"old-{i}"), i)
        clock.now += 11
        fresh = IdempotencyKey.for_request(USER, "CreateNode", "fresh")
        idem.store(fresh, "kept")

        assert idem.purge_expired() == 30
        assert backend.batches == [25, 5]
        assert idem.get(fresh) == ("kept", True)
        assert idem.purge_expired() == 0

    def test_store_backed_purge_leaves_other_items(self, store):
        """Only idempotency records are considered, on either backend."""
        clock = FakeClock()
        idem = StoreIdempotencyStore(store, ttl_seconds=10, clock=clock)
        idem.store(IdempotencyKey.for_request(USER, "CreateNode", "a"), 1)
        store.put(Key("OTHER#1", "S"), {"PK": "OTHER#1", "SK": "S", "TTL": 0})
        clock.now += 11

        assert idem.purge_expired() == 1
        assert store.get(Key("OTHER#1", "S")) is not None


class TestCreateNodeReplay:
    """Idempotent create_node through the handler."""

    def test_replay_returns_first_result(self, store, create_node):
        first = create_node("Graph storage", "Single table design", idempotency_key="req-1")
        second = create_node("Graph storage", "Single table design", idempotency_key="req-1")

        assert not first.replayed
        assert second.replayed
        assert second.node.node_id == first.node.node_id
        assert StoreNodeRepository(store).count_by_user(UserID(USER)) == 1

    def test_record_commits_with_the_node(self, store, create_node):
        result = create_node("Graph storage", "Single table design", idempotency_key="req-1")
        key = IdempotencyKey.for_request(USER, OP_CREATE_NODE, "req-1")
        item = store.get(keys.idempotency_key(USER, OP_CREATE_NODE, key.request_hash))
        assert item is not None
        assert result.node.node_id in item["Result"]

    def test_different_keys_create_different_nodes(self, store, create_node):
        a = create_node("Graph storage", "Single table design", idempotency_key="req-1")
        b = create_node("Graph storage", "Single table design", idempotency_key="req-2")
        assert a.node.node_id != b.node.node_id
        assert StoreNodeRepository(store).count_by_user(UserID(USER)) == 2

    def test_without_key_duplicates(self, store, create_node):
        create_node("Graph storage", "Single table design")
        create_node("Graph storage", "Single table design")
        assert StoreNodeRepository(store).count_by_user(UserID(USER)) == 2

    def test_in_memory_idempotency_replays(self, config):
        store = InMemoryStore()
        handler = NodeCommandHandler(
            store, idempotency=InMemoryIdempotencyStore(), retry_policy=RetryPolicy.no_delay(), config=config,
        )
        cmd = CreateNodeCommand(user_id=USER, title="Note", content="Body", idempotency_key="req-1")
        first = handler.create_node(cmd)
        second = handler.create_node(cmd)
        assert second.replayed
        assert second.node.node_id == first.node.node_id
        assert StoreNodeRepository(store).count_by_user(UserID(USER)) == 1

    def test_concurrent_duplicate_gets_winner_result(self, config):
        """The loser of a race sees the absent-guard conflict and replays the winner."""
        store = InMemoryStore()
        idem = StoreIdempotencyStore(store)
        handler = NodeCommandHandler(store, idempotency=idem, retry_policy=RetryPolicy.no_delay(), config=config)
        cmd = CreateNodeCommand(user_id=USER, title="Note", content="Body", idempotency_key="req-1")

        # Both requests pass the check before either commits
        real_get = idem.get
        calls = {"n": 0}

        def racing_get(key):
            calls["n"] += 1
            if calls["n"] == 1:
                winner = handler.create_node(cmd)
                racing_get.winner = winner
                return None, False
            return real_get(key)

        idem.get = racing_get
        loser = handler.create_node(cmd)

        assert loser.replayed
        assert loser.node.node_id == racing_get.winner.node.node_id
        assert StoreNodeRepository(store).count_by_user(UserID(USER)) == 1
