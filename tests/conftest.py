"""Shared pytest fixtures for GraphMem tests."""

import pytest

from graphmem.commands.handlers import CategoryCommandHandler, NodeCommandHandler
from graphmem.commands.models import CreateNodeCommand
from graphmem.config import Config
from graphmem.domain.connection_analyzer import ConnectionAnalyzer
from graphmem.event_bus import InMemoryEventBus
from graphmem.idempotency import StoreIdempotencyStore
from graphmem.queries.cache import QueryCache
from graphmem.queries.service import GraphQueryService
from graphmem.retry import RetryPolicy
from graphmem.store.memory_backend import InMemoryStore
from graphmem.store.sqlite_backend import SQLiteStore

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Every store-level test runs against both backends."""
    if request.param == "memory":
        backend = InMemoryStore()
    else:
        backend = SQLiteStore(tmp_path / "graphmem.db")
    yield backend
    backend.close()


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def config(tmp_path):
    return Config(data_dir=tmp_path, store_backend="memory")


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def cache():
    return QueryCache(ttl_seconds=60, max_entries=256)


@pytest.fixture
def analyzer():
    """Analyzer without tag bonus so scores are plain Jaccard ratios."""
    return ConnectionAnalyzer(threshold=0.3, max_connections=5, max_connections_limit=10, tag_bonus=0.0)


@pytest.fixture
def node_handler(store, bus, cache, analyzer, config):
    return NodeCommandHandler(
        store,
        analyzer=analyzer,
        event_bus=bus,
        idempotency=StoreIdempotencyStore(store),
        cache=cache,
        retry_policy=RetryPolicy.no_delay(),
        config=config,
    )


@pytest.fixture
def category_handler(store, bus, cache, config):
    return CategoryCommandHandler(store, event_bus=bus, cache=cache, config=config, retry_policy=RetryPolicy.no_delay())


class InterferingStore(InMemoryStore):
    """Store that lets another writer commit right before our transactions."""

    def __init__(self):
        super().__init__()
        self.interfere: list = []

    def transact(self, operations):
        if self.interfere:
            self.interfere.pop(0)()
        super().transact(operations)


@pytest.fixture
def interfering_store():
    return InterferingStore()


@pytest.fixture
def interfering_handlers(interfering_store, bus, cache, analyzer, config):
    """Node and category handlers sharing one InterferingStore."""
    nodes = NodeCommandHandler(
        interfering_store, analyzer=analyzer, event_bus=bus, cache=cache,
        retry_policy=RetryPolicy.no_delay(), config=config,
    )
    categories = CategoryCommandHandler(
        interfering_store, event_bus=bus, cache=cache, config=config, retry_policy=RetryPolicy.no_delay(),
    )
    return nodes, categories


@pytest.fixture
def queries(store, cache, analyzer):
    return GraphQueryService(store, cache=cache, analyzer=analyzer)


@pytest.fixture
def create_node(node_handler):
    """Factory: create a node for USER and return its CreateNodeResult."""

    def _create(title: str, content: str, tags: list[str] | None = None, user_id: str = USER, **kwargs):
        return node_handler.create_node(CreateNodeCommand(
            user_id=user_id,
            title=title,
            content=content,
            tags=tags or [],
            **kwargs,
        ))

    return _create
