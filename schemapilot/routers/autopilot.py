import logging

from fastapi import APIRouter, Request

from schemapilot.models.run import RunReport
from schemapilot.models.run_request import ConnectRequest
from schemapilot.routers.runs import RegistryDep, limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["autopilot"])


@router.post(
    "/autopilot",
    response_model=RunReport,
    summary="Run the whole pipeline without stopping",
    description=(
        "Connects, analyses every sitemap, keeps the suggested schema type for "
        "every page missing schema or flagged for audit, generates, validates "
        "and injects.  Returns the per-URL report."
    ),
)
@limiter.limit("2/minute")
async def autopilot(request: Request, body: ConnectRequest, registry: RegistryDep) -> RunReport:
    run = registry.create()
    logger.info(
        "Auto-pilot request received",
        extra={"run_id": run.id, "site_url": body.credentials.site_url},
    )
    try:
        return await run.run_auto_pilot(body.credentials, body.ai_config, body.business_info)
    finally:
        registry.remove(run.id)
