"""
Open Graph preview scraping for submitted links.

fetch() is best-effort and raises MetadataFetchError on any failure,
including running past its deadline. resolve_preview() wraps it and always
returns something displayable.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from shiori.errors import MetadataFetchError

logger = logging.getLogger(__name__)

OGP_TIMEOUT_SECONDS = float(os.getenv("OGP_TIMEOUT_SECONDS", "10"))
FAVICON_URL = "https://www.google.com/s2/favicons?domain={domain}&sz=128"
USER_AGENT = "Mozilla/5.0 (compatible; ShioriBot/1.0)"


@dataclass
class PageMetadata:
    title: str = ""
    description: str = ""
    image_url: str = ""


def extract_domain(url: str) -> str:
    """Hostname of url without a leading "www.", or "" if it has none."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return host.removeprefix("www.")


def favicon_url(domain: str) -> str:
    return FAVICON_URL.format(domain=quote(domain, safe=""))


def _meta_content(soup: BeautifulSoup, attr: str, value: str) -> str:
    tag = soup.find("meta", attrs={attr: value})
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def parse_metadata(html: str, page_url: str) -> PageMetadata:
    """Pull title, description and first image out of a page's markup."""
    soup = BeautifulSoup(html, "html.parser")

    title = _meta_content(soup, "property", "og:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()

    description = _meta_content(soup, "property", "og:description") or _meta_content(
        soup, "name", "description"
    )

    image = _meta_content(soup, "property", "og:image")
    if image:
        image = urljoin(page_url, image)

    return PageMetadata(title=title, description=description, image_url=image)


class MetadataFetcher:
    """
    Fetches and parses Open Graph data over a shared httpx client.

    `timeout` bounds the whole fetch, body read and parse included, not
    only each connect/read/write step the way httpx applies it.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = OGP_TIMEOUT_SECONDS,
    ):
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    async def _get(self, url: str) -> PageMetadata:
        response = await self._client.get(url)
        response.raise_for_status()
        return parse_metadata(response.text, str(response.url))

    async def fetch(self, url: str) -> PageMetadata:
        try:
            return await asyncio.wait_for(self._get(url), self.timeout)
        except asyncio.TimeoutError as exc:
            raise MetadataFetchError(
                f"could not fetch {url}: no response within {self.timeout}s"
            ) from exc
        except Exception as exc:
            # Malformed hosts surface as idna/Unicode errors, not httpx ones.
            raise MetadataFetchError(f"could not fetch {url}: {exc!r}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


async def resolve_preview(fetcher: MetadataFetcher, url: str) -> PageMetadata:
    """
    Fetch preview data for url, degrading instead of failing: a failed fetch
    yields the url as title with no description, and a missing image falls
    back to the site's favicon.
    """
    try:
        preview = await fetcher.fetch(url)
    except Exception as exc:
        logger.warning(f"Preview fetch failed, using fallback: {exc}")
        preview = PageMetadata(title=url)

    if not preview.title:
        preview.title = url

    domain = extract_domain(url)
    if not preview.image_url and domain:
        preview.image_url = favicon_url(domain)
    return preview
