"""
Board data-access layer.

Boards live in one hash each. Every board created with a device id is also
added to that device's sorted set, scored by creation time, so "my boards"
is a single ZREVRANGE.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from shiori.errors import NotFoundError, StorageError
from shiori.models import Board, BoardPatch
from shiori.redis_client import (
    board_key,
    decode_document,
    device_index_key,
    encode_document,
    storage_errors,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 50


def clamp_limit(limit: Optional[int]) -> int:
    """Limits outside [1, MAX_LIST_LIMIT] fall back to the default."""
    if limit is None or limit < 1 or limit > MAX_LIST_LIMIT:
        return DEFAULT_LIST_LIMIT
    return limit


def _decode_board(board_id: str, raw: dict[str, str]) -> Board:
    try:
        return Board(id=board_id, **decode_document(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise StorageError("decode board", str(exc)) from exc


class BoardStore:
    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def create_board(self, board: Board) -> Board:
        """Persist board under its pre-assigned id, stamping created_at."""
        board.created_at = datetime.now(timezone.utc)
        document = encode_document(board.model_dump(mode="json", exclude={"id"}))

        with storage_errors("create board"):
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.hset(board_key(board.id), mapping=document)
                if board.created_by_device_id:
                    await pipe.zadd(
                        device_index_key(board.created_by_device_id),
                        {board.id: board.created_at.timestamp()},
                    )
                await pipe.execute()

        logger.info("Board created", extra={"board_id": board.id})
        return board

    async def get_board(self, board_id: str) -> Board:
        with storage_errors("get board"):
            raw = await self._redis.hgetall(board_key(board_id))
        if not raw:
            raise NotFoundError("board", board_id)
        return _decode_board(board_id, raw)

    async def exists(self, board_id: str) -> bool:
        with storage_errors("get board"):
            return bool(await self._redis.exists(board_key(board_id)))

    async def update_board(self, board_id: str, patch: BoardPatch) -> None:
        """
        Overwrite exactly the fields set on patch. Each field is its own hash
        field, so concurrent updates to different fields both land; updates
        to the same field are last-write-wins.
        """
        fields = patch.fields()
        if not fields:
            return
        if not await self.exists(board_id):
            raise NotFoundError("board", board_id)
        with storage_errors("update board"):
            await self._redis.hset(board_key(board_id), mapping=encode_document(fields))
        logger.info(
            f"Board updated: {', '.join(sorted(fields))}", extra={"board_id": board_id}
        )

    async def list_boards_by_device(
        self, device_id: str, limit: Optional[int] = None
    ) -> list[Board]:
        """Return the device's boards, newest first, at most clamp_limit(limit)."""
        if not device_id:
            return []
        limit = clamp_limit(limit)

        with storage_errors("list boards"):
            board_ids = await self._redis.zrevrange(device_index_key(device_id), 0, limit - 1)
            if not board_ids:
                return []
            async with self._redis.pipeline(transaction=False) as pipe:
                for board_id in board_ids:
                    await pipe.hgetall(board_key(board_id))
                documents = await pipe.execute()

        boards: list[Board] = []
        for board_id, raw in zip(board_ids, documents):
            if not raw:
                continue  # Index entry without a document
            boards.append(_decode_board(board_id, raw))
        return boards
