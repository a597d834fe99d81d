from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from schemapilot.models.run_request import ValidateRequest
from schemapilot.routers.runs import limiter
from schemapilot.services.validator import ValidationResult, validate
from schemapilot.services.wordpress import RENDER_SNIPPET

router = APIRouter(tags=["tools"])


@router.post("/validate", summary="Validate a JSON-LD document locally")
@limiter.limit("30/minute")
async def validate_schema(request: Request, body: ValidateRequest) -> dict:
    result: ValidationResult = validate(body.json_ld, body.schema_type)
    return {
        "is_valid": result.is_valid,
        "errors": [e.model_dump() for e in result.errors],
        "warnings": [w.model_dump() for w in result.warnings],
    }


@router.get(
    "/setup/snippet",
    response_class=PlainTextResponse,
    summary="PHP snippet that renders injected schema",
    description=(
        "Add this to the theme's functions.php (or a snippets plugin) once.  It "
        "exposes the schema meta field to the REST API and prints it in <head>."
    ),
)
async def setup_snippet() -> str:
    return RENDER_SNIPPET
