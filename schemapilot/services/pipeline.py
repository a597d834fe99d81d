"""Pipeline orchestration: the wizard's stages and the work behind each gate.

A :class:`PipelineRun` walks ``credentials → sitemap-selection → url-list →
review → complete``.  Each public coroutine is one user gate; auto-pilot
simply calls them back to back.  Per-page failures end up on the page's
record; only credential and sitemap failures end the run, which then
returns to ``credentials``.
"""

import asyncio
import json
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional
from urllib.parse import quote

import httpx

from schemapilot.exceptions import AiError, CredentialError, SitemapError, StageError
from schemapilot.models.credentials import AiConfig, BusinessInfo, WpCredentials
from schemapilot.models.page import (
    GenerationStatus,
    InjectionStatus,
    PageRecord,
    SchemaStatus,
    SchemaType,
    ValidationStatus,
)
from schemapilot.models.run import (
    AnalysisSummary,
    Outcome,
    Progress,
    ReportItem,
    RunReport,
    RunState,
    Stage,
    ValidationExport,
)
from schemapilot.models.sitemap import SitemapGroup
from schemapilot.services import analyzer, wordpress
from schemapilot.services.ai import dispatch as ai
from schemapilot.services.cache import CacheStore, site_identity
from schemapilot.services.sitemap import (
    categorize_groups,
    collect_page_urls,
    fetch_sitemap_groups,
)
from schemapilot.services.validator import validate

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_TYPE = SchemaType.ARTICLE
RICH_RESULTS_TEST_URL = "https://search.google.com/test/rich-results"

# Every stage may also fall back to CREDENTIALS (restart or fatal error)
TRANSITIONS: Dict[Stage, frozenset] = {
    Stage.CREDENTIALS: frozenset({Stage.SITEMAP_SELECTION}),
    Stage.SITEMAP_SELECTION: frozenset({Stage.URL_LIST}),
    Stage.URL_LIST: frozenset({Stage.REVIEW}),
    Stage.REVIEW: frozenset({Stage.URL_LIST, Stage.COMPLETE}),
    Stage.COMPLETE: frozenset(),
}

_KNOWN_TYPES = {t.value: t for t in SchemaType}


def existing_primary_type(existing: Any) -> Optional[SchemaType]:
    """Best guess at the main type of an existing JSON-LD document.

    A known type other than ``WebPage`` wins; ``WebPage`` is used only when
    nothing more specific is present.
    """
    nodes: List[Any] = existing if isinstance(existing, list) else [existing]
    candidates: List[SchemaType] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        graph = node.get("@graph")
        for entity in [node] + (graph if isinstance(graph, list) else []):
            if not isinstance(entity, dict):
                continue
            declared = entity.get("@type")
            for name in declared if isinstance(declared, list) else [declared]:
                if isinstance(name, str) and name in _KNOWN_TYPES:
                    candidates.append(_KNOWN_TYPES[name])
    for candidate in candidates:
        if candidate != SchemaType.WEB_PAGE:
            return candidate
    return candidates[0] if candidates else None


def apply_validation(record: PageRecord) -> None:
    """Validate ``record.generated_schema`` against its selected type, in place."""
    record.validation_status = ValidationStatus.VALIDATING
    result = validate(record.generated_schema, record.selected_schema_type)
    record.validation_errors = result.errors
    record.validation_warnings = result.warnings
    record.validation_status = (
        ValidationStatus.VALID if result.is_valid else ValidationStatus.INVALID
    )


class PipelineRun:
    """State of one wizard session.

    The AI configuration lives only on this object and is never persisted.
    """

    def __init__(
        self,
        cache: CacheStore,
        *,
        client: Optional[httpx.AsyncClient] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.id = run_id or uuid.uuid4().hex
        self.cache = cache
        self.client = client
        self._reset()

    def _reset(self) -> None:
        self.stage = Stage.CREDENTIALS
        self.busy = False
        self.error: Optional[str] = None
        self.message = ""
        self.progress = Progress()
        self.creds: Optional[WpCredentials] = None
        self.ai_config: Optional[AiConfig] = None
        self.business_info: Optional[BusinessInfo] = None
        self.site = ""
        self.groups: List[SitemapGroup] = []
        self.records: Dict[str, PageRecord] = {}
        self.selected: List[str] = []
        self.summary: Optional[AnalysisSummary] = None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition(self, target: Stage) -> None:
        """Move to *target*, or raise :class:`StageError` if that move is illegal."""
        if target != Stage.CREDENTIALS and target not in TRANSITIONS[self.stage]:
            raise StageError(
                f"Cannot move from '{self.stage.value}' to '{target.value}'."
            )
        logger.info("Run %s: %s -> %s", self.id, self.stage.value, target.value)
        self.stage = target

    def _require(self, *stages: Stage) -> None:
        if self.busy:
            raise StageError("Another step of this run is still in progress.")
        if self.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise StageError(
                f"This step is only available in stage(s) {allowed}; run is in '{self.stage.value}'."
            )

    @contextmanager
    def _working(self, message: str = "") -> Iterator[None]:
        self.busy = True
        self.message = message
        try:
            yield
        finally:
            self.busy = False
            self.message = ""

    def _fail(self, exc: Exception) -> None:
        logger.error("Run %s failed: %s", self.id, exc)
        self.error = str(exc)
        self.transition(Stage.CREDENTIALS)

    def _set_message(self, message: str) -> None:
        self.message = message

    def _set_progress(self, current: int, total: int) -> None:
        self.progress = Progress(current=current, total=total)

    def restart(self) -> None:
        """Discard everything and return to the credentials stage."""
        if self.busy:
            raise StageError("Cannot restart while a step of this run is still in progress.")
        self._reset()

    # ------------------------------------------------------------------
    # Gate 1: credentials → sitemap selection
    # ------------------------------------------------------------------

    async def connect(
        self,
        creds: WpCredentials,
        ai_config: AiConfig,
        business_info: Optional[BusinessInfo] = None,
    ) -> List[SitemapGroup]:
        """Validate both credential sets, then resolve the site's sitemap.

        Raises:
            CredentialError: if WordPress or the AI provider rejects the credentials.
            SitemapError: if the sitemap cannot be resolved or lists no URLs.
        """
        self._require(Stage.CREDENTIALS)
        self.error = None

        with self._working("Validating credentials..."):
            try:
                wp_ok, ai_ok = await asyncio.gather(
                    wordpress.validate_credentials(creds, client=self.client),
                    ai.validate_key(ai_config),
                )
                if not wp_ok:
                    raise CredentialError(
                        "Invalid WordPress credentials or URL. Ensure the REST API is "
                        "enabled and the Application Password is correct."
                    )
                if not ai_ok:
                    raise CredentialError("Invalid AI Provider API Key.")

                groups = await fetch_sitemap_groups(
                    creds, self._set_message, client=self.client
                )
                if not groups:
                    raise SitemapError(
                        "No sitemaps or URLs found. Please check your sitemap URL and "
                        "ensure it is accessible."
                    )
            except (CredentialError, SitemapError) as exc:
                self._fail(exc)
                raise

        self.creds = creds
        self.ai_config = ai_config
        self.business_info = business_info
        self.site = site_identity(creds.site_url)
        self.groups = groups
        self.transition(Stage.SITEMAP_SELECTION)
        return groups

    # ------------------------------------------------------------------
    # Gate 2: sitemap selection → URL list
    # ------------------------------------------------------------------

    async def analyze(self, sitemap_urls: Optional[Iterable[str]] = None) -> AnalysisSummary:
        """Analyse every page of the chosen sitemaps (all when ``None``)."""
        self._require(Stage.SITEMAP_SELECTION)
        urls = collect_page_urls(self.groups, sitemap_urls)
        if not urls:
            raise ValueError("No URLs selected for analysis.")

        with self._working(f"Analyzing {len(urls)} URLs for existing schema..."):
            self._set_progress(0, len(urls))
            records = await analyzer.analyze_batch(
                urls, self.site, self.cache, progress=self._set_progress, client=self.client
            )
            suggested = await self._classify(records)

        self.records = {record.url: record for record in records}
        self.selected = []
        self.summary = AnalysisSummary(
            total=len(records),
            not_found=sum(r.schema_status == SchemaStatus.NOT_FOUND for r in records),
            audit_recommended=sum(
                r.schema_status == SchemaStatus.AUDIT_RECOMMENDED for r in records
            ),
            cached=sum(r.schema_status == SchemaStatus.CACHED for r in records),
            failed=sum(r.schema_status == SchemaStatus.ANALYSIS_FAILED for r in records),
            suggested=suggested,
        )
        logger.info(
            "Run %s: analysis complete, %d missing schema, %d failed",
            self.id,
            self.summary.not_found,
            self.summary.failed,
        )
        self.transition(Stage.URL_LIST)
        return self.summary

    async def _classify(self, records: List[PageRecord]) -> int:
        """Pick a schema type for every page and detect extra opportunities."""
        to_suggest: List[Dict[str, str]] = []
        for record in records:
            known = existing_primary_type(record.existing_schema)
            if known is not None:
                record.selected_schema_type = known
            elif record.is_selectable:
                to_suggest.append({"url": record.url, "title": record.title})

        suggestions: Dict[str, SchemaType] = {}
        if to_suggest:
            self._set_message("AI is suggesting schema types...")
            try:
                suggestions = await ai.suggest_types(to_suggest, self.ai_config)
            except AiError as exc:
                logger.warning(
                    "Schema type suggestion failed, defaulting to %s: %s",
                    DEFAULT_SCHEMA_TYPE.value,
                    exc,
                )

        by_url = {record.url: record for record in records}
        for entry in to_suggest:
            by_url[entry["url"]].selected_schema_type = suggestions.get(
                entry["url"], DEFAULT_SCHEMA_TYPE
            )

        processable = [r for r in records if r.is_selectable and r.content]
        for index, record in enumerate(processable, start=1):
            self._set_message(f"Detecting rich-result opportunities ({index}/{len(processable)})...")
            record.opportunities = await ai.detect_opportunities(record.content, self.ai_config)

        return sum(1 for entry in to_suggest if entry["url"] in suggestions)

    # ------------------------------------------------------------------
    # URL list edits
    # ------------------------------------------------------------------

    def _record(self, url: str) -> PageRecord:
        try:
            return self.records[url]
        except KeyError:
            raise ValueError(f"Unknown URL: {url}") from None

    def set_schema_type(self, url: str, schema_type: SchemaType) -> PageRecord:
        self._require(Stage.URL_LIST)
        record = self._record(url)
        record.selected_schema_type = schema_type
        return record

    def select(self, urls: Iterable[str]) -> List[str]:
        """Choose the pages to process. Only NotFound/AuditRecommended pages qualify."""
        self._require(Stage.URL_LIST)
        chosen: List[str] = []
        rejected: List[str] = []
        for url in urls:
            if url in chosen:
                continue
            record = self.records.get(url)
            if record is None or not record.is_selectable:
                rejected.append(url)
            else:
                chosen.append(url)
        if rejected:
            raise ValueError(f"These URLs cannot be selected: {', '.join(rejected)}")
        self.selected = chosen
        return chosen

    # ------------------------------------------------------------------
    # Gate 3: URL list → review
    # ------------------------------------------------------------------

    async def generate(self) -> List[PageRecord]:
        """Generate or audit the selected pages, one at a time, and validate each."""
        self._require(Stage.URL_LIST)
        if not self.selected:
            raise ValueError("No URLs selected for generation.")

        targets = [self.records[url] for url in self.selected]
        self.transition(Stage.REVIEW)
        for record in targets:
            record.generation_status = GenerationStatus.GENERATING
            record.generation_error = None
            record.validation_status = ValidationStatus.NOT_VALIDATED
            record.validation_errors = []
            record.validation_warnings = []
            record.injection_status = None
            record.injection_error = None

        with self._working("Generating schema..."):
            self._set_progress(0, len(targets))
            for index, record in enumerate(targets, start=1):
                await self._generate_one(record)
                self._set_progress(index, len(targets))
        return targets

    async def _generate_one(self, record: PageRecord) -> None:
        audit = (
            record.schema_status == SchemaStatus.AUDIT_RECOMMENDED
            and record.existing_schema is not None
        )
        try:
            if audit:
                schema = await ai.audit_and_upgrade(record, self.ai_config, self.business_info)
            else:
                schema = await ai.generate(record, self.ai_config, self.business_info)
        except AiError as exc:
            logger.warning("Schema generation failed for %s: %s", record.url, exc)
            record.generated_schema = None
            record.generation_status = GenerationStatus.FAILED
            record.generation_error = str(exc)
        else:
            record.generated_schema = schema
            record.generation_status = GenerationStatus.SUCCESS
            apply_validation(record)
        finally:
            # The scraped text is only needed for the AI call
            record.content = None

    def update_schema(self, url: str, schema: Dict[str, Any]) -> PageRecord:
        """Replace a generated schema with a manual edit and re-validate it."""
        self._require(Stage.REVIEW)
        record = self._record(url)
        if url not in self.selected or record.generation_status != GenerationStatus.SUCCESS:
            raise ValueError(f"{url} has no generated schema to edit.")
        record.generated_schema = schema
        apply_validation(record)
        return record

    def back_to_url_list(self) -> None:
        self._require(Stage.REVIEW)
        self.transition(Stage.URL_LIST)

    # ------------------------------------------------------------------
    # Gate 4: review → complete
    # ------------------------------------------------------------------

    async def inject(self) -> RunReport:
        """Write every selected, valid schema back to WordPress."""
        self._require(Stage.REVIEW)
        ready = [
            self.records[url]
            for url in self.selected
            if self.records[url].validation_status == ValidationStatus.VALID
            and self.records[url].generated_schema is not None
        ]

        with self._working(f"Starting injection for {len(ready)} schemas..."):
            self._set_progress(0, len(ready))
            await wordpress.inject_batch(
                self.creds, ready, progress=self._set_progress, client=self.client
            )

        self.transition(Stage.COMPLETE)
        return self.report()

    # ------------------------------------------------------------------
    # Auto-pilot
    # ------------------------------------------------------------------

    async def run_auto_pilot(
        self,
        creds: WpCredentials,
        ai_config: AiConfig,
        business_info: Optional[BusinessInfo] = None,
    ) -> RunReport:
        """Run every stage end to end, processing every eligible page."""
        await self.connect(creds, ai_config, business_info)
        await self.analyze()

        processable = [url for url, record in self.records.items() if record.is_selectable]
        if not processable:
            logger.info("Run %s: nothing to process, finishing", self.id)
            self.transition(Stage.REVIEW)
            self.transition(Stage.COMPLETE)
            return self.report()

        self.select(processable)
        await self.generate()
        return await self.inject()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _outcome(self, record: PageRecord) -> ReportItem:
        def item(outcome: Outcome, detail: Optional[str] = None) -> ReportItem:
            return ReportItem(
                url=record.url,
                title=record.title,
                schema_status=record.schema_status,
                outcome=outcome,
                detail=detail,
            )

        if record.schema_status == SchemaStatus.ANALYSIS_FAILED:
            return item(Outcome.ANALYSIS_FAILED, record.analysis_error)
        if record.schema_status == SchemaStatus.CACHED:
            return item(Outcome.CACHED, "Schema already present (cached result).")
        if record.url not in self.selected:
            return item(Outcome.NOT_SELECTED)
        if record.generation_status == GenerationStatus.FAILED:
            return item(Outcome.GENERATION_FAILED, record.generation_error)
        if record.validation_status == ValidationStatus.INVALID:
            return item(
                Outcome.INVALID, "; ".join(e.message for e in record.validation_errors)
            )
        if record.injection_status == InjectionStatus.SUCCESS:
            return item(Outcome.INJECTED)
        if record.injection_status == InjectionStatus.FAILED:
            return item(Outcome.INJECTION_FAILED, record.injection_error)
        return item(Outcome.PENDING)

    def report(self) -> RunReport:
        """One item per analysed URL, each with an explicit outcome."""
        items = [self._outcome(record) for record in self.records.values()]
        return RunReport(
            items=items,
            injected=sum(i.outcome == Outcome.INJECTED for i in items),
            failed=sum(
                i.outcome
                in (Outcome.INJECTION_FAILED, Outcome.GENERATION_FAILED, Outcome.ANALYSIS_FAILED)
                for i in items
            ),
        )

    def export_for_validation(self) -> List[ValidationExport]:
        """Generated schemas formatted for the external Rich Results Test."""
        self._require(Stage.REVIEW, Stage.COMPLETE)
        exports = []
        for url in self.selected:
            record = self.records[url]
            if record.generated_schema is None:
                continue
            exports.append(
                ValidationExport(
                    url=url,
                    json_ld_text=json.dumps(record.generated_schema, indent=2, ensure_ascii=False),
                    rich_results_url=f"{RICH_RESULTS_TEST_URL}?url={quote(url, safe='')}",
                )
            )
        return exports

    def snapshot(self) -> RunState:
        return RunState(
            id=self.id,
            stage=self.stage,
            busy=self.busy,
            error=self.error,
            message=self.message,
            progress=self.progress,
            sitemaps=categorize_groups(self.groups) if self.groups else None,
            summary=self.summary,
            selected=list(self.selected),
            pages=list(self.records.values()),
        )


class RunRegistry:
    """In-memory index of live runs, keyed by run id."""

    def __init__(self, cache: CacheStore, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self.cache = cache
        self.client = client
        self._runs: Dict[str, PipelineRun] = {}

    def create(self) -> PipelineRun:
        run = PipelineRun(self.cache, client=self.client)
        self._runs[run.id] = run
        return run

    def get(self, run_id: str) -> PipelineRun:
        return self._runs[run_id]

    def remove(self, run_id: str) -> None:
        self._runs.pop(run_id, None)
