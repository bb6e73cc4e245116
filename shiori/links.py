"""
Link data-access layer.

Links are scoped to a board: each link is a hash under the board's key
prefix, and the board's sorted set orders them by creation time.
Reactions are toggled with an optimistic WATCH/MULTI/EXEC transaction so
concurrent toggles on one link never overwrite each other.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from pydantic import ValidationError

from shiori.errors import NotFoundError, StorageError
from shiori.ids import new_link_id
from shiori.models import Link
from shiori.redis_client import (
    Transaction,
    decode_document,
    encode_document,
    link_key,
    links_index_key,
    run_transaction,
    storage_errors,
)

logger = logging.getLogger(__name__)


def toggle_member(members: list[str], member: str) -> list[str]:
    """Remove member if present, otherwise append it."""
    if member in members:
        return [name for name in members if name != member]
    return [*members, member]


def _decode_link(link_id: str, raw: dict[str, str]) -> Link:
    try:
        return Link(**{**decode_document(raw), "id": link_id})
    except (json.JSONDecodeError, ValidationError) as exc:
        raise StorageError("decode link", str(exc)) from exc


def _encode_link(link: Link) -> dict[str, str]:
    return encode_document(link.model_dump(mode="json", exclude={"id"}))


class LinkStore:
    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def list_links(self, board_id: str) -> list[Link]:
        """Return the board's links, newest first."""
        with storage_errors("list links"):
            link_ids = await self._redis.zrevrange(links_index_key(board_id), 0, -1)
            if not link_ids:
                return []
            async with self._redis.pipeline(transaction=False) as pipe:
                for link_id in link_ids:
                    await pipe.hgetall(link_key(board_id, link_id))
                documents = await pipe.execute()

        links: list[Link] = []
        for link_id, raw in zip(link_ids, documents):
            if not raw:
                continue  # Index entry without a document
            links.append(_decode_link(link_id, raw))
        return links

    async def create_link(self, board_id: str, link: Link) -> Link:
        """Store link under board_id with a fresh id and created_at."""
        link.id = new_link_id()
        link.created_at = datetime.now(timezone.utc)

        with storage_errors("create link"):
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.hset(link_key(board_id, link.id), mapping=_encode_link(link))
                await pipe.zadd(links_index_key(board_id), {link.id: link.created_at.timestamp()})
                await pipe.execute()

        logger.info("Link created", extra={"board_id": board_id, "link_id": link.id})
        return link

    async def get_link(self, board_id: str, link_id: str) -> Link:
        with storage_errors("get link"):
            raw = await self._redis.hgetall(link_key(board_id, link_id))
        if not raw:
            raise NotFoundError("link", link_id)
        return _decode_link(link_id, raw)

    async def delete_link(self, board_id: str, link_id: str) -> None:
        """Remove a link and its index entry. Missing links are not an error."""
        with storage_errors("delete link"):
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.delete(link_key(board_id, link_id))
                await pipe.zrem(links_index_key(board_id), link_id)
                await pipe.execute()
        logger.info("Link deleted", extra={"board_id": board_id, "link_id": link_id})

    async def toggle_reaction(
        self, board_id: str, link_id: str, emoji: str, member: str
    ) -> Link:
        """
        Add or remove member from the emoji's reaction list in one atomic
        read-modify-write. An emoji left with no members is dropped.

        Raises NotFoundError if the link does not exist when the transaction
        starts, ConflictError if the commit keeps losing to concurrent writes.
        Returns the link as re-read after the commit.
        """
        key = link_key(board_id, link_id)

        async def toggle(txn: Transaction) -> None:
            raw = await txn.read(key)
            if not raw:
                raise NotFoundError("link", link_id)
            link = _decode_link(link_id, raw)

            members = toggle_member(link.reactions.get(emoji, []), member)
            if members:
                link.reactions[emoji] = members
            else:
                link.reactions.pop(emoji, None)
            txn.write(key, _encode_link(link))

        with storage_errors("toggle reaction"):
            await run_transaction(self._redis, toggle)

        logger.info(
            f"Reaction {emoji} toggled by {member}",
            extra={"board_id": board_id, "link_id": link_id},
        )
        return await self.get_link(board_id, link_id)
