"""
Redis document-store runtime.

Key schema:
  board:{board_id}                → Hash        (board document, JSON-encoded fields)
  board:{board_id}:links          → Sorted Set  (link ids, score = created_at epoch)
  board:{board_id}:link:{link_id} → Hash        (link document, JSON-encoded fields)
  device:{device_id}:boards       → Sorted Set  (board ids, score = created_at epoch)

The device sorted set is the (creator device, created_at desc) index used by
"my boards".
"""
from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, TypeVar

import redis.asyncio as aioredis
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError, WatchError

from shiori.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
MAX_TRANSACTION_ATTEMPTS = 5

T = TypeVar("T")


async def init_redis(url: str = REDIS_URL) -> aioredis.Redis:
    """Create and verify the Redis connection. Crash loudly on failure."""
    client = aioredis.from_url(url, decode_responses=True)
    try:
        await client.ping()
    except RedisError as exc:
        raise RuntimeError(f"Cannot connect to Redis at {url}: {exc}") from exc
    return client


async def close_redis(client: aioredis.Redis | None) -> None:
    if client:
        await client.aclose()


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def board_key(board_id: str) -> str:
    return f"board:{board_id}"


def links_index_key(board_id: str) -> str:
    return f"board:{board_id}:links"


def link_key(board_id: str, link_id: str) -> str:
    return f"board:{board_id}:link:{link_id}"


def device_index_key(device_id: str) -> str:
    return f"device:{device_id}:boards"


# ---------------------------------------------------------------------------
# Document codec
# ---------------------------------------------------------------------------

def encode_document(fields: dict[str, Any]) -> dict[str, str]:
    """JSON-encode each field so lists and maps survive a Redis hash."""
    return {name: json.dumps(value, ensure_ascii=False) for name, value in fields.items()}


def decode_document(raw: dict[str, str]) -> dict[str, Any]:
    return {name: json.loads(value) for name, value in raw.items()}


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate Redis transport failures into StorageError."""
    try:
        yield
    except RedisError as exc:
        logger.error(f"Redis error during {operation}: {exc}")
        raise StorageError(operation, str(exc)) from exc


# ---------------------------------------------------------------------------
# Optimistic transactions
# ---------------------------------------------------------------------------

class Transaction:
    """
    One commit attempt. Reads WATCH their key and run immediately; writes
    are buffered and applied in a single MULTI/EXEC on commit. If any
    watched key changes before EXEC, Redis aborts the commit.
    """

    def __init__(self, pipe: Pipeline):
        self._pipe = pipe
        self._writes: list[tuple[str, dict[str, str]]] = []

    async def read(self, key: str) -> dict[str, str]:
        await self._pipe.watch(key)
        return await self._pipe.hgetall(key)

    def write(self, key: str, mapping: dict[str, str]) -> None:
        self._writes.append((key, mapping))

    async def commit(self) -> None:
        self._pipe.multi()
        for key, mapping in self._writes:
            await self._pipe.hset(key, mapping=mapping)
        await self._pipe.execute()


async def run_transaction(
    client: aioredis.Redis,
    body: Callable[[Transaction], Awaitable[T]],
    max_attempts: int = MAX_TRANSACTION_ATTEMPTS,
) -> T:
    """
    Run body inside an optimistic transaction, re-running it from a fresh
    read whenever the commit is aborted by a concurrent write. Raises
    ConflictError once max_attempts commits have been aborted. Exceptions
    raised by body abort the transaction and propagate unchanged.
    """
    for attempt in range(1, max_attempts + 1):
        async with client.pipeline(transaction=True) as pipe:
            txn = Transaction(pipe)
            result = await body(txn)
            try:
                await txn.commit()
            except WatchError:
                logger.info("Transaction aborted, retrying", extra={"attempt": attempt})
                continue
            return result
    raise ConflictError("transaction could not commit, try again")
