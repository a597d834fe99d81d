"""Google Gemini adapter, built on the ``google-genai`` SDK."""

import logging
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from schemapilot.exceptions import AiError
from schemapilot.models.credentials import AiConfig, BusinessInfo
from schemapilot.models.page import PageRecord
from schemapilot.services.ai import prompts
from schemapilot.services.ai.adapter import AiAdapter, PageSummary, parse_json_response

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


# One SDK client per API key, reused for every call of the process
_clients: Dict[str, genai.Client] = {}


def _client(config: AiConfig) -> genai.Client:
    client = _clients.get(config.api_key)
    if client is None:
        client = genai.Client(api_key=config.api_key)
        _clients[config.api_key] = client
    return client


async def _generate_json(
    config: AiConfig,
    prompt: str,
    *,
    system: Optional[str] = None,
    temperature: Optional[float] = None,
) -> Any:
    try:
        response = await _client(config).aio.models.generate_content(
            model=config.model or DEFAULT_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system,
                response_mime_type="application/json",
                temperature=temperature,
            ),
        )
    except genai_errors.APIError as exc:
        raise AiError(f"Gemini request failed: {exc}") from exc
    return parse_json_response(response.text)


async def validate_key(config: AiConfig) -> bool:
    """Spend a single output token to prove the key works.

    Always checked against :data:`DEFAULT_MODEL`: some models refuse a zero
    thinking budget and would reject a valid key.
    """
    try:
        await _client(config).aio.models.generate_content(
            model=DEFAULT_MODEL,
            contents="hi",
            config=types.GenerateContentConfig(
                max_output_tokens=1,
                thinking_config=types.ThinkingConfig(thinking_budget=0),
            ),
        )
    except genai_errors.APIError as exc:
        logger.warning("Gemini API key validation failed: %s", exc)
        return False
    return True


async def suggest_types(pages: List[PageSummary], config: AiConfig) -> Any:
    return await _generate_json(
        config, prompts.suggestion_prompt(pages), system=prompts.SUGGEST_SYSTEM, temperature=0.2
    )


async def generate(
    page: PageRecord, config: AiConfig, business: Optional[BusinessInfo] = None
) -> Any:
    return await _generate_json(
        config, prompts.generation_prompt(page, business), system=prompts.GENERATE_SYSTEM
    )


async def audit_and_upgrade(
    page: PageRecord, config: AiConfig, business: Optional[BusinessInfo] = None
) -> Any:
    return await _generate_json(
        config, prompts.audit_prompt(page, business), system=prompts.AUDIT_SYSTEM
    )


async def detect_opportunities(content: str, config: AiConfig) -> Any:
    return await _generate_json(
        config,
        prompts.opportunity_prompt(content),
        system=prompts.OPPORTUNITY_SYSTEM,
        temperature=0.0,
    )


ADAPTER = AiAdapter(
    validate_key=validate_key,
    suggest_types=suggest_types,
    generate=generate,
    audit_and_upgrade=audit_and_upgrade,
    detect_opportunities=detect_opportunities,
)
