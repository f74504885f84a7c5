"""Service wiring for GraphMem.

Lazy-initialized, process-wide instances. The store, event bus, idempotency
store and query cache are shared; handlers and the query service are thin
objects built on top of them.
"""

from functools import lru_cache

from graphmem.commands.handlers import CategoryCommandHandler, NodeCommandHandler
from graphmem.config import Config
from graphmem.domain.connection_analyzer import ConnectionAnalyzer
from graphmem.event_bus import InMemoryEventBus
from graphmem.idempotency import StoreIdempotencyStore
from graphmem.log_config import get_logger
from graphmem.queries.cache import QueryCache
from graphmem.queries.service import GraphQueryService
from graphmem.retry import RetryPolicy
from graphmem.store.factory import create_store
from graphmem.store.protocol import Store

log = get_logger("services")


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Get the Config instance (cached)."""
    return Config()


@lru_cache(maxsize=1)
def get_store() -> Store:
    """Get the Store instance (cached).

    Backend chosen by GRAPHMEM_STORE_BACKEND.
    """
    log.info("Initializing store")
    return create_store(get_config())


@lru_cache(maxsize=1)
def get_event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@lru_cache(maxsize=1)
def get_query_cache() -> QueryCache:
    config = get_config()
    return QueryCache(
        ttl_seconds=config.query_cache_ttl_seconds,
        max_entries=config.query_cache_max_entries,
    )


@lru_cache(maxsize=1)
def get_idempotency_store() -> StoreIdempotencyStore:
    """Get the idempotency store (cached).

    Records live in the main store so they commit with the command.
    """
    return StoreIdempotencyStore(get_store(), ttl_seconds=get_config().idempotency_ttl_seconds)


@lru_cache(maxsize=1)
def get_analyzer() -> ConnectionAnalyzer:
    return ConnectionAnalyzer.from_config(get_config())


@lru_cache(maxsize=1)
def get_node_handler() -> NodeCommandHandler:
    """Get the NodeCommandHandler instance (cached)."""
    config = get_config()
    log.info("Initializing NodeCommandHandler")
    return NodeCommandHandler(
        get_store(),
        analyzer=get_analyzer(),
        event_bus=get_event_bus(),
        idempotency=get_idempotency_store(),
        cache=get_query_cache(),
        retry_policy=RetryPolicy.from_config(config),
        config=config,
    )


@lru_cache(maxsize=1)
def get_category_handler() -> CategoryCommandHandler:
    return CategoryCommandHandler(
        get_store(),
        event_bus=get_event_bus(),
        cache=get_query_cache(),
        config=get_config(),
    )


@lru_cache(maxsize=1)
def get_query_service() -> GraphQueryService:
    return GraphQueryService(get_store(), cache=get_query_cache(), analyzer=get_analyzer())


_CACHED_FACTORIES = (
    get_config,
    get_store,
    get_event_bus,
    get_query_cache,
    get_idempotency_store,
    get_analyzer,
    get_node_handler,
    get_category_handler,
    get_query_service,
)


def clear_service_caches() -> None:
    """Clear all service caches (for testing)."""
    for factory in _CACHED_FACTORIES:
        factory.cache_clear()
    log.info("Service caches cleared")


def shutdown_services() -> None:
    """Close the store if it was created, then clear the caches."""
    log.info("Shutting down services...")
    if get_store.cache_info().currsize > 0:
        try:
            get_store().close()
            log.info("Store closed")
        except Exception as e:
            log.error(f"Error closing store: {e}")
    clear_service_caches()
    log.info("Services shutdown complete")
