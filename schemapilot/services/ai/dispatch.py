"""Provider-agnostic entry points for every AI operation.

The pipeline only talks to this module.  The adapter for a run is looked up
in :data:`ADAPTERS` from ``config.provider``; output that does not name a
known schema type is dropped here rather than trusted.
"""

import logging
from typing import Any, Dict, List, Optional

from schemapilot.exceptions import AiError
from schemapilot.models.credentials import AiConfig, AiProvider, BusinessInfo
from schemapilot.models.page import OPPORTUNITY_TYPES, PageRecord, SchemaType
from schemapilot.services.ai import gemini, openai_compatible
from schemapilot.services.ai.adapter import AiAdapter, PageSummary

logger = logging.getLogger(__name__)

ADAPTERS: Dict[AiProvider, AiAdapter] = {
    AiProvider.GEMINI: gemini.ADAPTER,
    AiProvider.OPENAI: openai_compatible.ADAPTER,
    AiProvider.CLAUDE: openai_compatible.ADAPTER,
    AiProvider.GROQ: openai_compatible.ADAPTER,
    AiProvider.OPENROUTER: openai_compatible.ADAPTER,
}

_KNOWN_TYPES = {t.value: t for t in SchemaType}


def adapter_for(config: AiConfig) -> AiAdapter:
    try:
        return ADAPTERS[config.provider]
    except KeyError:
        raise AiError(f"Unsupported AI provider: {config.provider}") from None


async def validate_key(config: AiConfig) -> bool:
    """Return whether the provider accepts ``config.api_key``. Never raises."""
    try:
        return bool(await adapter_for(config).validate_key(config))
    except Exception as exc:
        logger.warning("AI key validation for %s failed: %s", config.provider.value, exc)
        return False


async def suggest_types(pages: List[PageSummary], config: AiConfig) -> Dict[str, SchemaType]:
    """Ask the provider for one schema type per page, keyed by URL.

    Raises:
        AiError: if the call fails or the reply is not a JSON object.
    """
    try:
        raw = await adapter_for(config).suggest_types(pages, config)
    except AiError:
        raise
    except Exception as exc:
        raise AiError(f"AI failed to suggest schema types: {exc}") from exc

    if not isinstance(raw, dict):
        raise AiError("AI failed to suggest schema types: expected a JSON object.")

    suggestions: Dict[str, SchemaType] = {}
    for url, type_name in raw.items():
        schema_type = _KNOWN_TYPES.get(type_name) if isinstance(type_name, str) else None
        if schema_type is None:
            logger.warning("AI suggested an invalid schema type %r for %s. Ignoring.", type_name, url)
            continue
        suggestions[url] = schema_type
    return suggestions


def _require_object(raw: Any, url: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise AiError(f"AI returned a {type(raw).__name__} instead of a JSON object for {url}.")
    return raw


async def generate(
    page: PageRecord, config: AiConfig, business: Optional[BusinessInfo] = None
) -> Dict[str, Any]:
    """Draft a fresh JSON-LD document for *page*.

    Raises:
        AiError: on call failure or unusable output.
    """
    try:
        raw = await adapter_for(config).generate(page, config, business)
    except Exception as exc:
        raise AiError(f"AI generation failed: {exc}") from exc
    return _require_object(raw, page.url)


async def audit_and_upgrade(
    page: PageRecord, config: AiConfig, business: Optional[BusinessInfo] = None
) -> Dict[str, Any]:
    """Rework ``page.existing_schema`` into an upgraded JSON-LD document.

    Raises:
        AiError: on call failure or unusable output.
    """
    try:
        raw = await adapter_for(config).audit_and_upgrade(page, config, business)
    except Exception as exc:
        raise AiError(f"AI audit failed: {exc}") from exc
    return _require_object(raw, page.url)


async def detect_opportunities(content: str, config: AiConfig) -> List[SchemaType]:
    """Return the extra rich-result types *content* supports. Never raises."""
    if not content or not content.strip():
        return []
    try:
        raw = await adapter_for(config).detect_opportunities(content, config)
    except Exception as exc:
        logger.warning("Opportunity detection failed: %s", exc)
        return []

    names = raw.get("opportunities", []) if isinstance(raw, dict) else raw
    if not isinstance(names, list):
        return []

    allowed = {t.value: t for t in OPPORTUNITY_TYPES}
    found: List[SchemaType] = []
    for name in names:
        schema_type = allowed.get(name) if isinstance(name, str) else None
        if schema_type is not None and schema_type not in found:
            found.append(schema_type)
    return found
