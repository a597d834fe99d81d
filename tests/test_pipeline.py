"""Tests for the pipeline orchestrator: stage gates and end-to-end runs.

A fake WordPress site (sitemap, HTML pages and REST API) is served by an
``httpx.MockTransport``; the AI provider is a fake adapter patched into
:data:`~schemapilot.services.ai.dispatch.ADAPTERS`.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from schemapilot.exceptions import AiError, CredentialError, SitemapError, StageError
from schemapilot.models.cache import CacheEntry
from schemapilot.models.credentials import AiConfig, AiProvider, WpCredentials
from schemapilot.models.page import (
    GenerationStatus,
    InjectionStatus,
    SchemaStatus,
    SchemaType,
    ValidationStatus,
)
from schemapilot.models.run import Outcome, Stage
from schemapilot.services.ai import dispatch
from schemapilot.services.ai.adapter import AiAdapter
from schemapilot.services.cache import MemoryCacheStore
from schemapilot.services.pipeline import PipelineRun, RunRegistry, existing_primary_type

SITE = "https://wp.test"
RECIPE_URL = f"{SITE}/soup/"
CHAIR_URL = f"{SITE}/chair/"
POST_URL = f"{SITE}/hello/"
BROKEN_URL = f"{SITE}/broken/"

CREDS = WpCredentials(site_url=SITE, username="admin", app_password="pw")
AI_CONFIG = AiConfig(provider=AiProvider.GEMINI, api_key="key")

_RECIPE_HTML = """<html><head><title>Soup</title>
<script type="application/ld+json">{"@type": "Recipe", "name": "Soup"}</script>
</head><body><p>Boil water, add vegetables.</p></body></html>"""
_CHAIR_HTML = "<html><head><title>Chair</title></head><body><p>A fine chair.</p></body></html>"
_POST_HTML = "<html><head><title>Hello</title></head><body><p>First post.</p></body></html>"

VALID_ARTICLE = {
    "@type": "Article",
    "headline": "Hello",
    "datePublished": "2024-05-01",
    "author": {"@type": "Person", "name": "Ada"},
    "publisher": {"@type": "Organization", "name": "Acme"},
    "image": "https://wp.test/a.png",
}
PRODUCT_WITHOUT_OFFERS = {"@type": "Product", "name": "Chair"}
UPGRADED_RECIPE = {"@type": "Recipe", "name": "Soup", "recipeIngredient": ["water"]}


class FakeSite:
    def __init__(self, wp_auth_ok=True, sitemap_status=200):
        self.wp_auth_ok = wp_auth_ok
        self.sitemap_status = sitemap_status
        self.pages = {RECIPE_URL: _RECIPE_HTML, CHAIR_URL: _CHAIR_HTML, POST_URL: _POST_HTML}
        self.wp_posts = {"hello": 1, "chair": 2}
        self.wp_pages = {"soup": 3}
        self.page_fetches = []
        self.meta = {}
        self.broken = set()

    def _sitemap(self) -> str:
        urls = [*self.pages, *self.broken]
        locs = "".join(f"<url><loc>{url}</loc></url>" for url in urls)
        return f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{locs}</urlset>'

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        path = request.url.path
        if url == f"{SITE}/sitemap.xml":
            return httpx.Response(self.sitemap_status, text=self._sitemap())
        if url in self.broken:
            return httpx.Response(500)
        if url in self.pages:
            self.page_fetches.append(url)
            return httpx.Response(200, text=self.pages[url])
        if path == "/wp-json/wp/v2/users/me":
            return httpx.Response(200 if self.wp_auth_ok else 401, json={})
        for resource, items in (("posts", self.wp_posts), ("pages", self.wp_pages)):
            if request.method == "GET" and path == f"/wp-json/wp/v2/{resource}":
                slug = request.url.params.get("slug")
                return httpx.Response(200, json=[{"id": items[slug]}] if slug in items else [])
            prefix = f"/wp-json/wp/v2/{resource}/"
            if request.method == "POST" and path.startswith(prefix):
                content_id = int(path[len(prefix):])
                if content_id not in items.values():
                    return httpx.Response(404, json={"message": "Invalid post ID."})
                self.meta[content_id] = json.loads(request.content)["meta"]
                return httpx.Response(200, json={"id": content_id})
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


async def _fake_generate(page, config, business=None):
    if page.selected_schema_type == SchemaType.PRODUCT:
        return PRODUCT_WITHOUT_OFFERS
    return VALID_ARTICLE


def fake_adapter(**overrides) -> AiAdapter:
    defaults = dict(
        validate_key=AsyncMock(return_value=True),
        suggest_types=AsyncMock(return_value={CHAIR_URL: "Product", POST_URL: "Article"}),
        generate=AsyncMock(side_effect=_fake_generate),
        audit_and_upgrade=AsyncMock(return_value=UPGRADED_RECIPE),
        detect_opportunities=AsyncMock(return_value={"opportunities": []}),
    )
    defaults.update(overrides)
    return AiAdapter(**defaults)


def _using(adapter):
    return patch.dict(dispatch.ADAPTERS, {AiProvider.GEMINI: adapter})


def _run(coro):
    return asyncio.run(coro)


async def _connect_and_analyze(run: PipelineRun):
    await run.connect(CREDS, AI_CONFIG)
    return await run.analyze()


class TestStageGates:
    def test_new_run_starts_at_credentials(self):
        run = PipelineRun(MemoryCacheStore())
        assert run.stage == Stage.CREDENTIALS
        assert run.snapshot().stage == Stage.CREDENTIALS

    def test_skipping_a_stage_is_refused(self):
        run = PipelineRun(MemoryCacheStore())
        with pytest.raises(StageError):
            run.transition(Stage.REVIEW)

    def test_analyze_before_connect_is_refused(self):
        run = PipelineRun(MemoryCacheStore())
        with pytest.raises(StageError):
            _run(run.analyze())

    def test_inject_before_review_is_refused(self):
        run = PipelineRun(MemoryCacheStore())
        with pytest.raises(StageError):
            _run(run.inject())

    def test_busy_run_refuses_other_steps(self):
        run = PipelineRun(MemoryCacheStore())
        run.busy = True
        with pytest.raises(StageError, match="in progress"):
            _run(run.connect(CREDS, AI_CONFIG))

    def test_restart_while_busy_is_refused(self):
        run = PipelineRun(MemoryCacheStore())
        run.busy = True
        with pytest.raises(StageError, match="in progress"):
            run.restart()
        assert run.busy


class TestConnect:
    def test_success_moves_to_sitemap_selection(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()):
            groups = _run(run.connect(CREDS, AI_CONFIG))
        assert run.stage == Stage.SITEMAP_SELECTION
        assert len(groups[0].page_urls) == 3
        assert run.snapshot().sitemaps.secondary == groups

    def test_rejected_wordpress_credentials(self):
        site = FakeSite(wp_auth_ok=False)
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()), pytest.raises(CredentialError, match="WordPress"):
            _run(run.connect(CREDS, AI_CONFIG))
        assert run.stage == Stage.CREDENTIALS
        assert "WordPress" in run.error
        assert not run.busy

    def test_rejected_ai_key(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter(validate_key=AsyncMock(return_value=False))):
            with pytest.raises(CredentialError, match="AI Provider"):
                _run(run.connect(CREDS, AI_CONFIG))
        assert run.stage == Stage.CREDENTIALS

    def test_sitemap_failure_returns_to_credentials(self):
        site = FakeSite(sitemap_status=500)
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()), pytest.raises(SitemapError):
            _run(run.connect(CREDS, AI_CONFIG))
        assert run.stage == Stage.CREDENTIALS
        assert run.error


class TestAnalyze:
    def test_types_are_suggested_and_existing_type_kept(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        adapter = fake_adapter()
        with _using(adapter):
            summary = _run(_connect_and_analyze(run))

        assert run.stage == Stage.URL_LIST
        assert summary.total == 3
        assert summary.not_found == 2
        assert summary.audit_recommended == 1
        assert summary.suggested == 2
        assert run.records[RECIPE_URL].selected_schema_type == SchemaType.RECIPE
        assert run.records[CHAIR_URL].selected_schema_type == SchemaType.PRODUCT
        pages = adapter.suggest_types.call_args.args[0]
        assert {p["url"] for p in pages} == {CHAIR_URL, POST_URL}

    def test_suggestion_failure_defaults_to_article(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        adapter = fake_adapter(suggest_types=AsyncMock(side_effect=AiError("quota")))
        with _using(adapter):
            summary = _run(_connect_and_analyze(run))
        assert summary.suggested == 0
        assert run.records[CHAIR_URL].selected_schema_type == SchemaType.ARTICLE

    def test_opportunities_are_recorded(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        adapter = fake_adapter(detect_opportunities=AsyncMock(return_value={"opportunities": ["FAQPage"]}))
        with _using(adapter):
            _run(_connect_and_analyze(run))
        assert run.records[POST_URL].opportunities == [SchemaType.FAQ_PAGE]

    def test_only_missing_or_auditable_pages_are_selectable(self):
        site = FakeSite()
        cache = MemoryCacheStore()
        cache.write("wp.test", POST_URL, CacheEntry(schema_status=SchemaStatus.FOUND, title="Hello"))
        run = PipelineRun(cache, client=site.client())
        with _using(fake_adapter()):
            _run(_connect_and_analyze(run))
        assert run.records[POST_URL].schema_status == SchemaStatus.CACHED
        with pytest.raises(ValueError, match="cannot be selected"):
            run.select([POST_URL])
        assert run.select([CHAIR_URL, CHAIR_URL]) == [CHAIR_URL]

    def test_schema_type_override(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()):
            _run(_connect_and_analyze(run))
        run.set_schema_type(CHAIR_URL, SchemaType.ORGANIZATION)
        assert run.records[CHAIR_URL].selected_schema_type == SchemaType.ORGANIZATION


class TestManualRun:
    def test_end_to_end(self):
        site = FakeSite()
        site.broken.add(BROKEN_URL)
        cache = MemoryCacheStore()
        run = PipelineRun(cache, client=site.client())
        adapter = fake_adapter()

        async def scenario():
            await _connect_and_analyze(run)
            run.select([RECIPE_URL, CHAIR_URL, POST_URL])
            await run.generate()
            return await run.inject()

        with _using(adapter):
            report = _run(scenario())

        assert run.stage == Stage.COMPLETE
        adapter.audit_and_upgrade.assert_awaited_once()
        assert run.records[CHAIR_URL].validation_status == ValidationStatus.INVALID
        assert run.records[CHAIR_URL].injection_status is None
        assert all(record.content is None for record in run.records.values())

        outcomes = {item.url: item.outcome for item in report.items}
        assert outcomes == {
            RECIPE_URL: Outcome.INJECTED,
            CHAIR_URL: Outcome.INVALID,
            POST_URL: Outcome.INJECTED,
            BROKEN_URL: Outcome.ANALYSIS_FAILED,
        }
        assert report.injected == 2
        assert report.failed == 1
        assert run.summary.failed == 1
        assert "500" in run.records[BROKEN_URL].analysis_error
        assert json.loads(site.meta[3]["ai_generated_schema"]) == UPGRADED_RECIPE
        assert json.loads(site.meta[1]["ai_generated_schema"]) == VALID_ARTICLE

        second = PipelineRun(cache, client=site.client())
        site.page_fetches.clear()
        with _using(fake_adapter()):
            _run(_connect_and_analyze(second))
        assert second.records[RECIPE_URL].schema_status == SchemaStatus.CACHED
        assert RECIPE_URL not in site.page_fetches

    def test_generation_failure_is_isolated(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())

        async def flaky(page, config, business=None):
            if page.url == CHAIR_URL:
                raise AiError("model overloaded")
            return VALID_ARTICLE

        async def scenario():
            await _connect_and_analyze(run)
            run.select([CHAIR_URL, POST_URL])
            await run.generate()

        with _using(fake_adapter(generate=AsyncMock(side_effect=flaky))):
            _run(scenario())

        chair = run.records[CHAIR_URL]
        assert chair.generation_status == GenerationStatus.FAILED
        assert "model overloaded" in chair.generation_error
        assert chair.content is None
        assert run.records[POST_URL].validation_status == ValidationStatus.VALID
        assert run.progress.current == run.progress.total == 2

    def test_manual_edit_is_revalidated(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())

        async def scenario():
            await _connect_and_analyze(run)
            run.select([CHAIR_URL])
            await run.generate()

        with _using(fake_adapter()):
            _run(scenario())

        assert run.records[CHAIR_URL].validation_status == ValidationStatus.INVALID
        fixed = dict(PRODUCT_WITHOUT_OFFERS, offers={"@type": "Offer", "price": "10", "priceCurrency": "EUR"})
        record = run.update_schema(CHAIR_URL, fixed)
        assert record.validation_status == ValidationStatus.VALID

        with pytest.raises(ValueError):
            run.update_schema(POST_URL, VALID_ARTICLE)

    def test_generate_without_selection_is_refused(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()):
            _run(_connect_and_analyze(run))
            with pytest.raises(ValueError):
                _run(run.generate())
        assert run.stage == Stage.URL_LIST

    def test_export_links_to_rich_results_test(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())

        async def scenario():
            await _connect_and_analyze(run)
            run.select([POST_URL])
            await run.generate()

        with _using(fake_adapter()):
            _run(scenario())

        [export] = run.export_for_validation()
        assert json.loads(export.json_ld_text) == VALID_ARTICLE
        assert export.rich_results_url == (
            "https://search.google.com/test/rich-results?url=https%3A%2F%2Fwp.test%2Fhello%2F"
        )

    def test_restart_clears_everything(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()):
            _run(_connect_and_analyze(run))
        run.restart()
        assert run.stage == Stage.CREDENTIALS
        assert run.records == {}
        assert run.ai_config is None


    def test_restart_during_analysis_leaves_the_run_intact(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())

        async def scenario():
            await run.connect(CREDS, AI_CONFIG)
            task = asyncio.create_task(run.analyze())
            await asyncio.sleep(0)
            assert run.busy
            with pytest.raises(StageError):
                run.restart()
            return await task

        with _using(fake_adapter()):
            summary = _run(scenario())
        assert summary.total == 3
        assert run.stage == Stage.URL_LIST
        assert run.ai_config == AI_CONFIG
        assert not run.busy


class TestAutoPilot:
    def test_processes_every_eligible_page(self):
        site = FakeSite()
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()):
            report = _run(run.run_auto_pilot(CREDS, AI_CONFIG))
        assert run.stage == Stage.COMPLETE
        assert {item.outcome for item in report.items} == {Outcome.INJECTED, Outcome.INVALID}
        assert run.records[POST_URL].injection_status == InjectionStatus.SUCCESS

    def test_nothing_to_do_still_completes(self):
        site = FakeSite()
        cache = MemoryCacheStore()
        for url in site.pages:
            cache.write("wp.test", url, CacheEntry(schema_status=SchemaStatus.FOUND, title="t"))
        run = PipelineRun(cache, client=site.client())
        adapter = fake_adapter()
        with _using(adapter):
            report = _run(run.run_auto_pilot(CREDS, AI_CONFIG))
        assert run.stage == Stage.COMPLETE
        assert {item.outcome for item in report.items} == {Outcome.CACHED}
        adapter.generate.assert_not_called()

    def test_bad_credentials_stop_the_run(self):
        site = FakeSite(wp_auth_ok=False)
        run = PipelineRun(MemoryCacheStore(), client=site.client())
        with _using(fake_adapter()), pytest.raises(CredentialError):
            _run(run.run_auto_pilot(CREDS, AI_CONFIG))
        assert run.stage == Stage.CREDENTIALS


class TestHelpers:
    def test_existing_type_prefers_specific_over_webpage(self):
        existing = {"@graph": [{"@type": "WebPage"}, {"@type": "Product"}]}
        assert existing_primary_type(existing) == SchemaType.PRODUCT

    def test_existing_type_unknown(self):
        assert existing_primary_type([{"@type": "Event"}]) is None
        assert existing_primary_type(None) is None

    def test_registry(self):
        registry = RunRegistry(MemoryCacheStore())
        run = registry.create()
        assert registry.get(run.id) is run
        registry.remove(run.id)
        with pytest.raises(KeyError):
            registry.get(run.id)
