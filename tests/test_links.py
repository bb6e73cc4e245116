"""Link store: ordering, deletion, and the reaction toggle transaction."""
import asyncio

import pytest

from shiori.errors import ConflictError, NotFoundError, StorageError
from shiori.links import toggle_member
from shiori.models import Link
from shiori.redis_client import run_transaction


def make_link(url: str) -> Link:
    return Link(url=url, category="Food", added_by="Alice")


def test_toggle_member_appends_when_absent():
    assert toggle_member(["Bob"], "Alice") == ["Bob", "Alice"]


def test_toggle_member_removes_when_present():
    assert toggle_member(["Alice", "Bob"], "Alice") == ["Bob"]


async def test_create_assigns_id_timestamp_and_empty_reactions(link_store, board):
    link = await link_store.create_link(board.id, make_link("https://example.com"))

    stored = await link_store.get_link(board.id, link.id)
    assert len(link.id) == 20
    assert stored.reactions == {}
    assert stored.created_at == link.created_at


async def test_list_links_newest_first(link_store, board):
    first = await link_store.create_link(board.id, make_link("https://a.example"))
    second = await link_store.create_link(board.id, make_link("https://b.example"))

    links = await link_store.list_links(board.id)

    assert [l.id for l in links] == [second.id, first.id]


async def test_list_links_of_empty_board_is_empty(link_store):
    assert await link_store.list_links("empty-board") == []


async def test_links_are_scoped_to_their_board(link_store, board):
    await link_store.create_link(board.id, make_link("https://a.example"))

    assert await link_store.list_links("another-board") == []


async def test_delete_removes_only_that_link(link_store, board):
    keep = await link_store.create_link(board.id, make_link("https://keep.example"))
    drop = await link_store.create_link(board.id, make_link("https://drop.example"))

    await link_store.delete_link(board.id, drop.id)

    links = await link_store.list_links(board.id)
    assert [l.id for l in links] == [keep.id]
    with pytest.raises(NotFoundError):
        await link_store.get_link(board.id, drop.id)


async def test_delete_missing_link_is_not_an_error(link_store, link, board):
    await link_store.delete_link(board.id, "doesnotexist")

    assert [l.id for l in await link_store.list_links(board.id)] == [link.id]


async def test_undecodable_link_raises_storage_error(link_store, board, link, redis):
    await redis.hset(f"board:{board.id}:link:{link.id}", "reactions", "[1, 2]")

    with pytest.raises(StorageError):
        await link_store.get_link(board.id, link.id)
    with pytest.raises(StorageError):
        await link_store.toggle_reaction(board.id, link.id, "👍", "Alice")


async def test_toggle_adds_then_removes_member(link_store, board, link):
    on = await link_store.toggle_reaction(board.id, link.id, "👍", "Alice")
    assert on.reactions == {"👍": ["Alice"]}

    off = await link_store.toggle_reaction(board.id, link.id, "👍", "Alice")
    assert off.reactions == {}


async def test_toggle_leaves_other_emoji_and_fields_alone(link_store, board, link):
    await link_store.toggle_reaction(board.id, link.id, "🎉", "Bob")
    await link_store.toggle_reaction(board.id, link.id, "👍", "Alice")
    await link_store.toggle_reaction(board.id, link.id, "👍", "Bob")

    updated = await link_store.toggle_reaction(board.id, link.id, "👍", "Alice")

    assert updated.reactions == {"🎉": ["Bob"], "👍": ["Bob"]}
    assert updated.url == link.url
    assert updated.created_at == link.created_at


async def test_toggle_missing_link_raises_not_found(link_store, board, redis):
    with pytest.raises(NotFoundError):
        await link_store.toggle_reaction(board.id, "missing", "👍", "Alice")
    assert await redis.exists(f"board:{board.id}:link:missing") == 0


async def test_concurrent_toggles_are_both_kept(link_store, board, link):
    await asyncio.gather(
        link_store.toggle_reaction(board.id, link.id, "👍", "Alice"),
        link_store.toggle_reaction(board.id, link.id, "🎉", "Bob"),
    )

    final = await link_store.get_link(board.id, link.id)
    assert final.reactions == {"👍": ["Alice"], "🎉": ["Bob"]}


async def test_many_concurrent_toggles_on_one_emoji(link_store, board, link):
    members = ["Alice", "Bob", "Carol", "Dave"]

    await asyncio.gather(
        *(link_store.toggle_reaction(board.id, link.id, "👍", m) for m in members)
    )

    final = await link_store.get_link(board.id, link.id)
    assert sorted(final.reactions["👍"]) == sorted(members)


async def test_transaction_gives_up_after_repeated_conflicts(redis):
    await redis.hset("doc", mapping={"n": "0"})
    attempts = []

    async def body(txn):
        await txn.read("doc")
        attempts.append(len(attempts) + 1)
        # A writer on another connection lands between read and commit.
        await redis.hset("doc", "n", str(len(attempts)))
        txn.write("doc", {"n": "lost"})

    with pytest.raises(ConflictError):
        await run_transaction(redis, body, max_attempts=3)

    assert attempts == [1, 2, 3]
    assert await redis.hget("doc", "n") == "3"


async def test_transaction_commits_when_undisturbed(redis):
    await redis.hset("doc", mapping={"n": "0"})

    async def body(txn):
        current = await txn.read("doc")
        txn.write("doc", {"n": str(int(current["n"]) + 1)})
        return "done"

    assert await run_transaction(redis, body) == "done"
    assert await redis.hget("doc", "n") == "1"
