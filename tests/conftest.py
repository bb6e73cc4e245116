"""Shared fixtures: in-process Redis, a scripted preview fetcher, and an API client."""
from __future__ import annotations

import dataclasses

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient

from shiori.boards import BoardStore
from shiori.errors import MetadataFetchError
from shiori.links import LinkStore
from shiori.main import app, get_fetcher, get_redis
from shiori.models import Board, Link
from shiori.opengraph import PageMetadata


class FakeFetcher:
    """Serves canned previews; any other URL fails like an unreachable site."""

    def __init__(self):
        self.pages: dict[str, PageMetadata] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    async def fetch(self, url: str) -> PageMetadata:
        self.calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        if url not in self.pages:
            raise MetadataFetchError(f"could not fetch {url}")
        return dataclasses.replace(self.pages[url])


@pytest.fixture
def redis_server():
    """Backing server; set `.connected = False` to simulate an outage."""
    return fakeredis.FakeServer()


@pytest.fixture
async def redis(redis_server):
    client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def board_store(redis):
    return BoardStore(redis)


@pytest.fixture
def link_store(redis):
    return LinkStore(redis)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
async def client(redis, fetcher):
    """API client with Redis and the preview fetcher swapped for fakes."""
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_fetcher] = lambda: fetcher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
async def board(board_store):
    return await board_store.create_board(
        Board(id="board-1", title="Kyoto trip", members=["Alice", "Bob"], created_by_device_id="dev-1")
    )


@pytest.fixture
async def link(link_store, board):
    return await link_store.create_link(
        board.id,
        Link(url="https://example.com/a", category="Food", added_by="Alice"),
    )
