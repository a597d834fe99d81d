import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from schemapilot.models.page import PageRecord
from schemapilot.models.run import AnalysisSummary, RunReport, RunState, ValidationExport
from schemapilot.models.run_request import (
    AnalyzeRequest,
    ConnectRequest,
    SchemaTypeUpdate,
    SchemaUpdate,
    SelectRequest,
)
from schemapilot.services.cache import JsonFileCacheStore
from schemapilot.services.pipeline import PipelineRun, RunRegistry

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/runs", tags=["runs"])

_registry = RunRegistry(JsonFileCacheStore())


def get_registry() -> RunRegistry:
    return _registry


RegistryDep = Annotated[RunRegistry, Depends(get_registry)]


def _get_run(registry: RunRegistry, run_id: str) -> PipelineRun:
    try:
        return registry.get(run_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found.") from None


@router.post(
    "",
    response_model=RunState,
    status_code=status.HTTP_201_CREATED,
    summary="Start a run and connect to WordPress",
    description=(
        "Validates the WordPress Application Password and the AI provider key "
        "concurrently, then resolves the site's sitemap tree.  On success the "
        "run is left in the `sitemap-selection` stage."
    ),
)
@limiter.limit("10/minute")
async def create_run(request: Request, body: ConnectRequest, registry: RegistryDep) -> RunState:
    run = registry.create()
    logger.info("Run created", extra={"run_id": run.id, "site_url": body.credentials.site_url})
    await run.connect(body.credentials, body.ai_config, body.business_info)
    return run.snapshot()


@router.get("/{run_id}", response_model=RunState, summary="Current state of a run")
async def get_run(run_id: str, registry: RegistryDep) -> RunState:
    return _get_run(registry, run_id).snapshot()


@router.post(
    "/{run_id}/analyze",
    response_model=AnalysisSummary,
    summary="Analyse every page of the chosen sitemaps",
)
@limiter.limit("5/minute")
async def analyze(
    request: Request, run_id: str, body: AnalyzeRequest, registry: RegistryDep
) -> AnalysisSummary:
    run = _get_run(registry, run_id)
    try:
        return await run.analyze(body.sitemap_urls)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.put(
    "/{run_id}/pages/schema-type",
    response_model=PageRecord,
    summary="Override the schema type chosen for a page",
)
async def set_schema_type(run_id: str, body: SchemaTypeUpdate, registry: RegistryDep) -> PageRecord:
    run = _get_run(registry, run_id)
    try:
        return run.set_schema_type(body.url, body.schema_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{run_id}/select", response_model=List[str], summary="Choose the pages to process")
async def select(run_id: str, body: SelectRequest, registry: RegistryDep) -> List[str]:
    run = _get_run(registry, run_id)
    try:
        return run.select(body.urls)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post(
    "/{run_id}/generate",
    response_model=RunState,
    summary="Generate and validate schema for the selected pages",
)
@limiter.limit("5/minute")
async def generate(request: Request, run_id: str, registry: RegistryDep) -> RunState:
    run = _get_run(registry, run_id)
    try:
        await run.generate()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return run.snapshot()


@router.put(
    "/{run_id}/pages/schema",
    response_model=PageRecord,
    summary="Replace a generated schema with a manual edit",
)
async def update_schema(run_id: str, body: SchemaUpdate, registry: RegistryDep) -> PageRecord:
    run = _get_run(registry, run_id)
    try:
        return run.update_schema(body.url, body.json_ld)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{run_id}/back", response_model=RunState, summary="Return from review to the URL list")
async def back(run_id: str, registry: RegistryDep) -> RunState:
    run = _get_run(registry, run_id)
    run.back_to_url_list()
    return run.snapshot()


@router.post(
    "/{run_id}/inject",
    response_model=RunReport,
    summary="Write every valid schema back to WordPress",
)
@limiter.limit("5/minute")
async def inject(request: Request, run_id: str, registry: RegistryDep) -> RunReport:
    return await _get_run(registry, run_id).inject()


@router.get("/{run_id}/report", response_model=RunReport, summary="Per-URL outcome of a run")
async def report(run_id: str, registry: RegistryDep) -> RunReport:
    return _get_run(registry, run_id).report()


@router.get(
    "/{run_id}/export",
    response_model=List[ValidationExport],
    summary="Generated schemas formatted for the Rich Results Test",
)
async def export(run_id: str, registry: RegistryDep) -> List[ValidationExport]:
    return _get_run(registry, run_id).export_for_validation()


@router.post("/{run_id}/restart", response_model=RunState, summary="Reset a run to the credentials stage")
async def restart(run_id: str, registry: RegistryDep) -> RunState:
    run = _get_run(registry, run_id)
    run.restart()
    return run.snapshot()


@router.delete("/{run_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Discard a run")
async def delete_run(run_id: str, registry: RegistryDep) -> None:
    _get_run(registry, run_id)
    registry.remove(run_id)
