from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from schemapilot.models.page import PageRecord, SchemaStatus
from schemapilot.models.sitemap import CategorizedSitemaps


class Stage(str, Enum):
    """Wizard stages, in the order a run normally visits them."""

    CREDENTIALS = "credentials"
    SITEMAP_SELECTION = "sitemap-selection"
    URL_LIST = "url-list"
    REVIEW = "review"
    COMPLETE = "complete"


class Outcome(str, Enum):
    INJECTED = "injected"
    INJECTION_FAILED = "injection_failed"
    INVALID = "invalid"
    GENERATION_FAILED = "generation_failed"
    ANALYSIS_FAILED = "analysis_failed"
    CACHED = "cached"
    NOT_SELECTED = "not_selected"
    PENDING = "pending"


class Progress(BaseModel):
    current: int = 0
    total: int = 0


class AnalysisSummary(BaseModel):
    total: int = 0
    not_found: int = 0
    audit_recommended: int = 0
    cached: int = 0
    failed: int = 0
    suggested: int = 0


class ReportItem(BaseModel):
    url: str
    title: str
    schema_status: SchemaStatus
    outcome: Outcome
    detail: Optional[str] = None


class RunReport(BaseModel):
    items: List[ReportItem]
    injected: int
    failed: int


class ValidationExport(BaseModel):
    """A generated schema ready to paste into Google's Rich Results Test."""

    url: str
    json_ld_text: str
    rich_results_url: str


class RunState(BaseModel):
    id: str
    stage: Stage
    busy: bool = False
    error: Optional[str] = None
    message: str = ""
    progress: Progress = Field(default_factory=Progress)
    sitemaps: Optional[CategorizedSitemaps] = None
    summary: Optional[AnalysisSummary] = None
    selected: List[str] = Field(default_factory=list)
    pages: List[PageRecord] = Field(default_factory=list)
