from typing import List

from pydantic import BaseModel, Field


class SitemapGroup(BaseModel):
    """Page URLs listed by a single (leaf) sitemap file."""

    source_sitemap_url: str
    page_urls: List[str] = Field(default_factory=list)


class CategorizedSitemaps(BaseModel):
    """Sitemap groups split into post/page sitemaps and everything else.

    ``primary`` groups are pre-selected for analysis; ``secondary`` groups
    (categories, tags, authors, products, ...) are offered but not selected.
    """

    primary: List[SitemapGroup]
    secondary: List[SitemapGroup]
