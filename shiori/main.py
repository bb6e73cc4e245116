"""
Shiori: shared link boards. FastAPI application.

Boards are created by a device, hold links added by members, and links carry
emoji reactions keyed by member name. All API routes live under /api.
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

import shiori.redis_client as rc
from shiori.boards import BoardStore
from shiori.errors import NotFoundError, RequestError, ShioriError
from shiori.ids import new_board_id, validate_id
from shiori.links import LinkStore
from shiori.models import (
    DEFAULT_TAGS,
    Board,
    BoardCreate,
    BoardCreated,
    BoardPatch,
    Link,
    LinkCreate,
    ReactionToggle,
)
from shiori.observability import setup_logging
from shiori.opengraph import MetadataFetcher, extract_domain, resolve_preview

logger = logging.getLogger(__name__)

PORT = int(os.getenv("PORT", "8080"))
CORS_ALLOWED_ORIGIN = os.getenv("CORS_ALLOWED_ORIGIN", "http://localhost:3000")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    app.state.redis = await rc.init_redis()
    app.state.fetcher = MetadataFetcher()
    logger.info("Shiori API started")
    yield
    logger.info("Shiori API shutting down")
    await app.state.fetcher.aclose()
    await rc.close_redis(app.state.redis)


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = FastAPI(title="Shiori", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CORS_ALLOWED_ORIGIN],
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_redis(request: Request) -> aioredis.Redis:
    return request.app.state.redis


def get_board_store(redis: aioredis.Redis = Depends(get_redis)) -> BoardStore:
    return BoardStore(redis)


def get_link_store(redis: aioredis.Redis = Depends(get_redis)) -> LinkStore:
    return LinkStore(redis)


def get_fetcher(request: Request) -> MetadataFetcher:
    return request.app.state.fetcher


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.exception_handler(ShioriError)
async def shiori_error_handler(request: Request, exc: ShioriError):
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        f"{type(exc).__name__}: {exc.message}",
        extra={"error_code": exc.code, "path": request.url.path},
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "invalid request"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "internal error"})


# ---------------------------------------------------------------------------
# Helpers: input validation
# ---------------------------------------------------------------------------

def require_id(value: str, kind: str) -> None:
    if not validate_id(value):
        raise RequestError(f"invalid {kind} id")


def clean_names(names: list[str]) -> list[str]:
    """Trim every entry and drop the ones left empty."""
    return [name.strip() for name in names if name.strip()]


def parse_limit(raw: Optional[str]) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def clean_patch(patch: BoardPatch) -> BoardPatch:
    fields = patch.fields()
    if not fields:
        raise RequestError("no valid fields to update")

    cleaned = {}
    if "title" in fields:
        title = (fields["title"] or "").strip()
        if not title:
            raise RequestError("title is required")
        cleaned["title"] = title
    if "members" in fields:
        members = clean_names(fields["members"] or [])
        if not members:
            raise RequestError("at least one member is required")
        cleaned["members"] = members
    if "tags" in fields:
        cleaned["tags"] = clean_names(fields["tags"] or [])
    return BoardPatch(**cleaned)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/healthz")
async def health(redis: aioredis.Redis = Depends(get_redis)):
    try:
        await redis.ping()
    except RedisError:
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Boards
# ---------------------------------------------------------------------------

@app.post("/api/boards", response_model=BoardCreated)
async def create_board(payload: BoardCreate, boards: BoardStore = Depends(get_board_store)):
    title = payload.title.strip()
    if not title:
        raise RequestError("title is required")
    members = clean_names(payload.members)
    if not members:
        raise RequestError("at least one member is required")

    board = Board(
        id=new_board_id(),
        title=title,
        members=members,
        tags=list(DEFAULT_TAGS),
        created_by_device_id=payload.device_id.strip(),
    )
    await boards.create_board(board)
    return BoardCreated(board_id=board.id)


@app.get("/api/me/boards", response_model=list[Board])
async def list_my_boards(
    device_id: str = "",
    limit: Optional[str] = None,
    boards: BoardStore = Depends(get_board_store),
):
    return await boards.list_boards_by_device(device_id.strip(), parse_limit(limit))


@app.get("/api/boards/{board_id}", response_model=Board)
async def get_board(board_id: str, boards: BoardStore = Depends(get_board_store)):
    require_id(board_id, "board")
    return await boards.get_board(board_id)


@app.patch("/api/boards/{board_id}", response_model=Board)
async def update_board(
    board_id: str,
    payload: BoardPatch,
    boards: BoardStore = Depends(get_board_store),
):
    require_id(board_id, "board")
    await boards.update_board(board_id, clean_patch(payload))
    return await boards.get_board(board_id)


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

@app.get("/api/boards/{board_id}/links", response_model=list[Link])
async def list_links(board_id: str, links: LinkStore = Depends(get_link_store)):
    require_id(board_id, "board")
    return await links.list_links(board_id)


@app.post("/api/boards/{board_id}/links", response_model=list[Link])
async def create_link(
    board_id: str,
    payload: LinkCreate,
    boards: BoardStore = Depends(get_board_store),
    links: LinkStore = Depends(get_link_store),
    fetcher: MetadataFetcher = Depends(get_fetcher),
):
    require_id(board_id, "board")
    url = payload.url.strip()
    category = payload.category.strip()
    added_by = payload.added_by.strip()
    if not (url and category and added_by):
        raise RequestError("url, category and added_by are required")
    if not await boards.exists(board_id):
        raise NotFoundError("board", board_id)

    preview = await resolve_preview(fetcher, url)
    link = Link(
        url=url,
        title=preview.title,
        image_url=preview.image_url,
        description=preview.description,
        domain=extract_domain(url),
        category=category,
        added_by=added_by,
    )
    await links.create_link(board_id, link)

    # The client renders the whole board from this response.
    return await links.list_links(board_id)


@app.delete("/api/boards/{board_id}/links/{link_id}")
async def delete_link(board_id: str, link_id: str, links: LinkStore = Depends(get_link_store)):
    require_id(board_id, "board")
    require_id(link_id, "link")
    await links.delete_link(board_id, link_id)
    return Response(status_code=204)


@app.post("/api/boards/{board_id}/links/{link_id}/reactions", response_model=Link)
async def toggle_reaction(
    board_id: str,
    link_id: str,
    payload: ReactionToggle,
    links: LinkStore = Depends(get_link_store),
):
    require_id(board_id, "board")
    require_id(link_id, "link")
    emoji = payload.emoji.strip()
    member = payload.member.strip()
    if not (emoji and member):
        raise RequestError("emoji and member are required")
    return await links.toggle_reaction(board_id, link_id, emoji, member)


def run() -> None:
    uvicorn.run("shiori.main:app", host="0.0.0.0", port=PORT)
