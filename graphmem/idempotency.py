"""Idempotency store for non-idempotent commands (node creation).

Keys are (user, operation, request hash). The request hash is the SHA-256
of the client-supplied idempotency key, so raw client tokens never reach
the store.

Two implementations:
- InMemoryIdempotencyStore: process-local TTL map. The record is written
  after the command commits, so a crash in between can repeat the effect
  once on retry (at-least-once).
- StoreIdempotencyStore: records live in the main store under
  ``IDEMPOTENCY#<user>#<op>``. ``prepare_put`` returns a conditional Put
  that the command folds into its own transaction, so the record and the
  effect commit together (exactly-once).

Expired records are treated as absent. ``purge_expired`` removes them in
bulk: batch deletes, each conditioned on the TTL it saw.
"""

import hashlib
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, runtime_checkable

import orjson

from graphmem.db import keys
from graphmem.errors import ConditionCheckFailedError, StoreError, ValidationError
from graphmem.log_config import get_logger
from graphmem.store.protocol import (
    GUARD_ABSENT,
    AttributeEquals,
    AttributeNotExists,
    Delete,
    Key,
    Put,
    Store,
)

log = get_logger("idempotency")

DEFAULT_TTL_SECONDS = 24 * 60 * 60
MAX_CLIENT_KEY_LENGTH = 256
# Deletes per batch_write call when purging
PURGE_BATCH_SIZE = 25


@dataclass(frozen=True)
class IdempotencyKey:
    user_id: str
    operation: str
    request_hash: str

    @classmethod
    def for_request(cls, user_id: Any, operation: str, client_key: str) -> "IdempotencyKey":
        """Build a key from the caller's idempotency token.

        Raises:
            ValidationError: Empty or oversized token
        """
        if not client_key or not client_key.strip():
            raise ValidationError("idempotency key cannot be empty")
        if len(client_key) > MAX_CLIENT_KEY_LENGTH:
            raise ValidationError(f"idempotency key exceeds maximum length of {MAX_CLIENT_KEY_LENGTH}")
        digest = hashlib.sha256(client_key.encode("utf-8")).hexdigest()
        return cls(str(user_id), operation, digest)

    @property
    def store_key(self):
        return keys.idempotency_key(self.user_id, self.operation, self.request_hash)


@runtime_checkable
class IdempotencyStore(Protocol):
    def get(self, key: IdempotencyKey) -> tuple[Any, bool]:
        """Return (result, found)."""
        ...

    def store(self, key: IdempotencyKey, result: Any) -> None:
        """Record a result. An existing live record wins (first writer)."""
        ...

    def prepare_put(self, key: IdempotencyKey, result: Any) -> Put | None:
        """Operation to fold into the command's transaction, if supported."""
        ...


class InMemoryIdempotencyStore:
    """Thread-safe in-process idempotency map with TTL."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[IdempotencyKey, tuple[bytes, float]] = {}

    def get(self, key: IdempotencyKey) -> tuple[Any, bool]:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None, False
            payload, expires_at = record
            if expires_at <= now:
                del self._records[key]
                return None, False
        return orjson.loads(payload), True

    def store(self, key: IdempotencyKey, result: Any) -> None:
        payload = orjson.dumps(result)
        now = self._clock()
        with self._lock:
            existing = self._records.get(key)
            if existing is not None and existing[1] > now:
                log.debug(f"Idempotency record already present for {key.operation}, keeping first")
                return
            self._records[key] = (payload, now + self.ttl_seconds)

    def prepare_put(self, key: IdempotencyKey, result: Any) -> Put | None:
        return None

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._records.items() if exp <= now]
            for k in expired:
                del self._records[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class StoreIdempotencyStore:
    """Idempotency records in the main store, written transactionally."""

    def __init__(self, store: Store, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.backend = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _item(self, key: IdempotencyKey, result: Any) -> dict[str, Any]:
        store_key = key.store_key
        now = self._clock()
        return {
            "PK": store_key.pk,
            "SK": store_key.sk,
            "EntityType": keys.ENTITY_IDEMPOTENCY,
            "Result": orjson.dumps(result).decode("utf-8"),
            "CreatedAt": datetime.fromtimestamp(now, timezone.utc).isoformat(),
            "TTL": int(now + self.ttl_seconds),
        }

    def get(self, key: IdempotencyKey) -> tuple[Any, bool]:
        store_key = key.store_key
        item = self.backend.get(store_key)
        if item is None:
            return None, False
        if int(item.get("TTL", 0)) <= self._clock():
            # Expired: remove it so a fresh conditional put can succeed
            try:
                self.backend.delete(store_key, condition=AttributeEquals("TTL", item.get("TTL")))
            except ConditionCheckFailedError:
                log.debug("Expired idempotency record replaced concurrently")
                return self.get(key)
            return None, False
        try:
            return orjson.loads(item["Result"]), True
        except (KeyError, orjson.JSONDecodeError) as e:
            raise StoreError(f"corrupt idempotency record: {e}") from e

    def store(self, key: IdempotencyKey, result: Any) -> None:
        item = self._item(key, result)
        try:
            self.backend.put(key.store_key, item, condition=AttributeNotExists("PK"))
        except ConditionCheckFailedError:
            log.debug(f"Idempotency record already present for {key.operation}, keeping first")

    def prepare_put(self, key: IdempotencyKey, result: Any) -> Put:
        return Put(
            self._item(key, result),
            condition=AttributeNotExists("PK"),
            guard=GUARD_ABSENT,
            resource=("idempotency record", key.operation),
        )

    def _expired_records(self) -> list[tuple[Key, Any]]:
        now = self._clock()
        expired = []
        start_key = None
        while True:
            page = self.backend.scan(
                filter=AttributeEquals("EntityType", keys.ENTITY_IDEMPOTENCY),
                attributes=("PK", "SK", "TTL"),
                start_key=start_key,
            )
            expired.extend((Key.of(it), it.get("TTL")) for it in page.items if int(it.get("TTL", 0)) <= now)
            if not page.has_more:
                return expired
            start_key = page.last_key

    def purge_expired(self) -> int:
        """Delete every expired record with batched writes.

        A record refreshed after the scan no longer matches its TTL condition
        and is left alone.

        Returns:
            Number of records deleted
        """
        expired = self._expired_records()
        purged = 0
        for start in range(0, len(expired), PURGE_BATCH_SIZE):
            chunk = expired[start:start + PURGE_BATCH_SIZE]
            failed = self.backend.batch_write([
                Delete(key, condition=AttributeEquals("TTL", ttl)) for key, ttl in chunk
            ])
            purged += len(chunk) - len(failed)
        if purged:
            log.info(f"Purged {purged} expired idempotency records")
        return purged
