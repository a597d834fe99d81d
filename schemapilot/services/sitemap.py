"""Sitemap resolution: expands sitemap indexes into per-sitemap URL groups."""

import logging
import re
from typing import Callable, Iterable, List, Optional, Set, Tuple
from xml.etree import ElementTree

import httpx

from schemapilot.exceptions import NetworkError, SitemapError
from schemapilot.models.credentials import WpCredentials
from schemapilot.models.sitemap import CategorizedSitemaps, SitemapGroup
from schemapilot.services.fetcher import fetch

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

# Sitemap files that list posts or pages: WordPress core names them
# wp-sitemap-posts-<post type>-N.xml, Yoast and Rank Math post-sitemapN.xml.
_PRIMARY_SITEMAP_RE = re.compile(
    r"^(?:wp-sitemap-posts-(?:post|page)-\d+|(?:post|page)-sitemap\d*)\.xml$",
    re.IGNORECASE,
)


def _local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree puts on every tag."""
    return tag.rsplit("}", 1)[-1]


def _parse_sitemap(xml_text: str) -> Tuple[List[str], List[str]]:
    """Return ``(nested_sitemap_locs, page_locs)`` found in *xml_text*.

    Raises:
        ElementTree.ParseError: if *xml_text* is not well-formed XML.
    """
    root = ElementTree.fromstring(xml_text)
    sitemap_locs: List[str] = []
    page_locs: List[str] = []

    for entry in root:
        kind = _local_name(entry.tag)
        if kind not in ("sitemap", "url"):
            continue
        for child in entry:
            if _local_name(child.tag) == "loc" and child.text and child.text.strip():
                target = sitemap_locs if kind == "sitemap" else page_locs
                target.append(child.text.strip())

    return sitemap_locs, page_locs


async def _resolve(
    url: str,
    visited: Set[str],
    client: Optional[httpx.AsyncClient],
    progress: Optional[ProgressCallback],
) -> List[SitemapGroup]:
    if url in visited:
        logger.warning("Sitemap %s was already visited, skipping to avoid a cycle", url)
        return []
    visited.add(url)

    try:
        response = await fetch(url, client=client)
    except (ValueError, NetworkError) as exc:
        raise SitemapError(f"Could not fetch sitemap {url}: {exc}") from exc

    if not response.is_success:
        raise SitemapError(
            f"Failed to fetch sitemap {url}: server responded with status {response.status_code}"
        )

    try:
        sitemap_locs, page_locs = _parse_sitemap(response.text)
    except ElementTree.ParseError as exc:
        raise SitemapError(
            f"Failed to parse sitemap XML at {url}. The file may be malformed."
        ) from exc

    if sitemap_locs:
        if progress:
            progress(f"Found sitemap index with {len(sitemap_locs)} nested sitemaps... Parsing...")
        groups: List[SitemapGroup] = []
        # One nested sitemap at a time, in listed order
        for nested_url in sitemap_locs:
            groups.extend(await _resolve(nested_url, visited, client, None))
        return groups

    if page_locs:
        return [SitemapGroup(source_sitemap_url=url, page_urls=page_locs)]

    return []


async def resolve(
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    progress: Optional[ProgressCallback] = None,
) -> List[SitemapGroup]:
    """Expand the sitemap at *url* into a flat list of :class:`SitemapGroup`.

    Sitemap indexes are followed depth-first and their groups concatenated in
    listed order.  A sitemap already seen during this call is skipped, so a
    self-referencing index terminates.

    Raises:
        SitemapError: on fetch failure, an error status, malformed XML, or
            when the whole tree yields no page URLs.
    """
    groups = await _resolve(url, set(), client, progress)
    if sum(len(group.page_urls) for group in groups) == 0:
        raise SitemapError(f"No URLs found in sitemap {url}.")
    return groups


def default_sitemap_url(creds: WpCredentials) -> str:
    return creds.sitemap_url or f"{creds.site_url.rstrip('/')}/sitemap.xml"


async def fetch_sitemap_groups(
    creds: WpCredentials,
    progress: Optional[ProgressCallback] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> List[SitemapGroup]:
    """Resolve the site's sitemap, reporting progress messages along the way."""
    sitemap_url = default_sitemap_url(creds)
    if progress:
        progress("Fetching and parsing sitemap...")

    try:
        groups = await resolve(sitemap_url, client=client, progress=progress)
    except SitemapError as exc:
        raise SitemapError(
            f"Could not fetch or parse sitemap at {sitemap_url}. Please ensure the URL "
            f"is correct and public. Error: {exc}"
        ) from exc

    if progress:
        total = sum(len(group.page_urls) for group in groups)
        progress(f"Found {total} URLs across {len(groups)} sitemaps.")
    return groups


def is_primary_sitemap(sitemap_url: str) -> bool:
    """Return *True* when *sitemap_url* looks like a post or page sitemap."""
    filename = sitemap_url.rstrip("/").rsplit("/", 1)[-1]
    return bool(_PRIMARY_SITEMAP_RE.search(filename))


def categorize_groups(groups: Iterable[SitemapGroup]) -> CategorizedSitemaps:
    primary: List[SitemapGroup] = []
    secondary: List[SitemapGroup] = []
    for group in groups:
        (primary if is_primary_sitemap(group.source_sitemap_url) else secondary).append(group)
    return CategorizedSitemaps(primary=primary, secondary=secondary)


def collect_page_urls(
    groups: Iterable[SitemapGroup], selected: Optional[Iterable[str]] = None
) -> List[str]:
    """Union the page URLs of the *selected* groups (all when ``None``).

    Duplicates are dropped; the first occurrence fixes a URL's position.
    """
    wanted = set(selected) if selected is not None else None
    seen: Set[str] = set()
    urls: List[str] = []
    for group in groups:
        if wanted is not None and group.source_sitemap_url not in wanted:
            continue
        for url in group.page_urls:
            if url not in seen:
                seen.add(url)
                urls.append(url)
    return urls
