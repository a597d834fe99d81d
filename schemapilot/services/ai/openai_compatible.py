"""Adapter for providers speaking the OpenAI chat-completions dialect.

OpenAI, Anthropic Claude, Groq and OpenRouter differ only in base URL,
default model and how the key is presented, so they share one code path
driven by :data:`PROVIDER_CONFIG`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from schemapilot.exceptions import AiError, NetworkError
from schemapilot.models.credentials import AiConfig, AiProvider, BusinessInfo
from schemapilot.models.page import PageRecord
from schemapilot.services.ai import prompts
from schemapilot.services.ai.adapter import AiAdapter, PageSummary, parse_json_response
from schemapilot.services.fetcher import fetch

logger = logging.getLogger(__name__)

_AI_TIMEOUT = 120  # seconds; full schema graphs take a while to generate


@dataclass(frozen=True)
class ProviderSettings:
    base_url: str
    default_model: str
    key_header: str = "Authorization"
    key_format: str = "Bearer {key}"
    extra_headers: Dict[str, str] = field(default_factory=dict)


PROVIDER_CONFIG: Dict[AiProvider, ProviderSettings] = {
    AiProvider.OPENAI: ProviderSettings(
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
    ),
    AiProvider.CLAUDE: ProviderSettings(
        base_url="https://api.anthropic.com/v1",
        default_model="claude-3-haiku-20240307",
        key_header="x-api-key",
        key_format="{key}",
        extra_headers={"anthropic-version": "2023-06-01"},
    ),
    AiProvider.GROQ: ProviderSettings(
        base_url="https://api.groq.com/openai/v1",
        default_model="llama3-8b-8192",
    ),
    AiProvider.OPENROUTER: ProviderSettings(
        base_url="https://openrouter.ai/api/v1",
        default_model="nous-hermes-2-mixtral-8x7b-dpo",
    ),
}


def _settings(config: AiConfig) -> ProviderSettings:
    try:
        return PROVIDER_CONFIG[config.provider]
    except KeyError:
        raise AiError(f"Invalid provider specified: {config.provider.value}") from None


def _headers(settings: ProviderSettings, api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        settings.key_header: settings.key_format.format(key=api_key),
        **settings.extra_headers,
    }


async def _call_api(
    config: AiConfig,
    endpoint: str,
    body: Dict[str, Any],
) -> Dict[str, Any]:
    settings = _settings(config)
    try:
        response = await fetch(
            f"{settings.base_url}{endpoint}",
            method="POST",
            allow_proxy=False,
            headers=_headers(settings, config.api_key),
            json=body,
            timeout=_AI_TIMEOUT,
        )
    except NetworkError as exc:
        raise AiError(str(exc)) from exc

    if not response.is_success:
        logger.warning("%s API error body: %s", config.provider.value, response.text[:500])
        raise AiError(
            f"API request failed with status {response.status_code}: {response.reason_phrase}"
        )

    try:
        return response.json()
    except ValueError as exc:
        raise AiError(f"API returned a non-JSON body: {exc}") from exc


async def _chat_json(
    config: AiConfig, system: str, user: str, temperature: float
) -> Any:
    settings = _settings(config)
    data = await _call_api(
        config,
        "/chat/completions",
        {
            "model": config.model or settings.default_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "temperature": temperature,
        },
    )
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise AiError("API response did not contain a completion.") from exc
    return parse_json_response(content)


async def validate_key(config: AiConfig) -> bool:
    """Make the cheapest authenticated call the provider offers."""
    settings = _settings(config)
    try:
        if config.provider == AiProvider.CLAUDE:
            # Anthropic has no free model listing; one output token is close enough
            await _call_api(
                config,
                "/messages",
                {
                    "model": config.model or settings.default_model,
                    "messages": [{"role": "user", "content": "hi"}],
                    "max_tokens": 1,
                },
            )
            return True

        response = await fetch(
            f"{settings.base_url}/models",
            allow_proxy=False,
            headers={settings.key_header: settings.key_format.format(key=config.api_key)},
        )
        return response.is_success
    except (AiError, NetworkError) as exc:
        logger.warning("API key validation failed for %s: %s", config.provider.value, exc)
        return False


async def suggest_types(pages: List[PageSummary], config: AiConfig) -> Any:
    return await _chat_json(
        config,
        prompts.SUGGEST_SYSTEM,
        prompts.suggestion_prompt(pages) + "\n\nRespond with nothing but the JSON object.",
        temperature=0.2,
    )


async def generate(
    page: PageRecord, config: AiConfig, business: Optional[BusinessInfo] = None
) -> Any:
    return await _chat_json(
        config, prompts.GENERATE_SYSTEM, prompts.generation_prompt(page, business), 0.3
    )


async def audit_and_upgrade(
    page: PageRecord, config: AiConfig, business: Optional[BusinessInfo] = None
) -> Any:
    return await _chat_json(
        config, prompts.AUDIT_SYSTEM, prompts.audit_prompt(page, business), 0.3
    )


async def detect_opportunities(content: str, config: AiConfig) -> Any:
    return await _chat_json(
        config, prompts.OPPORTUNITY_SYSTEM, prompts.opportunity_prompt(content), 0.0
    )


ADAPTER = AiAdapter(
    validate_key=validate_key,
    suggest_types=suggest_types,
    generate=generate,
    audit_and_upgrade=audit_and_upgrade,
    detect_opportunities=detect_opportunities,
)
