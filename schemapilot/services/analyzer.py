"""Page analysis: title, plain-text content and existing JSON-LD of one URL."""

import asyncio
import json
import logging
import re
from typing import Any, Callable, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

from schemapilot.exceptions import NetworkError
from schemapilot.models.cache import CacheEntry
from schemapilot.models.page import PageRecord, SchemaStatus
from schemapilot.services.cache import CacheStore
from schemapilot.services.fetcher import fetch

logger = logging.getLogger(__name__)

ANALYSIS_BATCH_SIZE = 10
NO_TITLE = "No Title Found"
FAILED_TITLE = "Failed to analyze URL"

# Cached outcomes that make a fresh fetch unnecessary
_SKIP_STATUSES = (SchemaStatus.FOUND, SchemaStatus.AUDIT_RECOMMENDED)
# Outcomes worth remembering for the next run
_CACHEABLE_STATUSES = (
    SchemaStatus.FOUND,
    SchemaStatus.AUDIT_RECOMMENDED,
    SchemaStatus.NOT_FOUND,
)

_WHITESPACE_RE = re.compile(r"\s+")

BatchProgress = Callable[[int, int], None]


def _extract_json_ld(soup: BeautifulSoup) -> Tuple[bool, Optional[Any]]:
    """Return ``(block_present, parsed_value)`` for the first JSON-LD block.

    ``parsed_value`` is ``None`` when the block is absent or not valid JSON.
    """
    script = soup.find(
        "script", attrs={"type": lambda t: t and t.strip().lower() == "application/ld+json"}
    )
    if script is None:
        return False, None
    try:
        return True, json.loads(script.string or script.get_text() or "")
    except ValueError:
        return True, None


def parse_page(html: str) -> Tuple[str, str, SchemaStatus, Optional[Any]]:
    """Return ``(title, content, schema_status, existing_schema)`` for *html*.

    A JSON-LD block that does not parse counts as no block at all so the page
    is regenerated instead of audited.
    """
    soup = BeautifulSoup(html, "lxml")

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    title = title or NO_TITLE

    has_block, existing = _extract_json_ld(soup)
    if has_block and existing is not None:
        status = SchemaStatus.AUDIT_RECOMMENDED
    else:
        if has_block:
            logger.debug("Ignoring malformed JSON-LD block")
        status = SchemaStatus.NOT_FOUND
        existing = None

    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    body = soup.body or soup
    content = _WHITESPACE_RE.sub(" ", body.get_text(separator=" ")).strip()

    return title, content, status, existing


def _failed(url: str, message: str) -> PageRecord:
    return PageRecord(
        url=url,
        title=FAILED_TITLE,
        schema_status=SchemaStatus.ANALYSIS_FAILED,
        analysis_error=message,
    )


async def analyze(
    url: str,
    site: str,
    cache: CacheStore,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> PageRecord:
    """Analyse *url* for the site namespace *site*.

    A cached Found/AuditRecommended outcome short-circuits to ``Cached`` with
    no network traffic.  Fetch failures and error statuses yield an
    ``AnalysisFailed`` record; nothing is raised for per-page problems.
    """
    cached = await asyncio.to_thread(cache.get, site, url)
    if cached is not None and cached.schema_status in _SKIP_STATUSES:
        logger.debug("Analyzer: %s served from cache (%s)", url, cached.schema_status.value)
        return PageRecord(
            url=url,
            title=cached.title,
            schema_status=SchemaStatus.CACHED,
            existing_schema=cached.existing_schema,
        )

    try:
        response = await fetch(url, client=client)
    except (ValueError, NetworkError) as exc:
        logger.warning("Analyzer: could not fetch %s – %s", url, exc)
        return _failed(url, str(exc))

    if not response.is_success:
        logger.warning("Analyzer: %s responded with status %d", url, response.status_code)
        return _failed(url, f"Server responded with status {response.status_code}")

    title, content, status, existing = parse_page(response.text)

    if status in _CACHEABLE_STATUSES:
        entry = CacheEntry(schema_status=status, title=title, existing_schema=existing)
        await asyncio.to_thread(cache.write, site, url, entry)

    return PageRecord(
        url=url,
        title=title,
        content=content,
        schema_status=status,
        existing_schema=existing,
    )


async def analyze_batch(
    urls: List[str],
    site: str,
    cache: CacheStore,
    *,
    batch_size: int = ANALYSIS_BATCH_SIZE,
    progress: Optional[BatchProgress] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[PageRecord]:
    """Analyse *urls* in batches of *batch_size*, returning records in input order.

    Each batch is awaited in full before the next one starts.  An exception
    escaping :func:`analyze` is recorded on that URL and never aborts the
    batch.
    """
    records: List[PageRecord] = []
    total = len(urls)

    for start in range(0, total, batch_size):
        batch = urls[start:start + batch_size]
        results = await asyncio.gather(
            *(analyze(url, site, cache, client=client) for url in batch),
            return_exceptions=True,
        )
        for url, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.error("Analyzer: unexpected failure for %s: %r", url, result)
                records.append(_failed(url, str(result) or type(result).__name__))
            else:
                records.append(result)

        if progress:
            progress(min(start + len(batch), total), total)

    return records
