"""The capability set every AI provider adapter supplies."""

import json
import re
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional

from schemapilot.exceptions import AiError
from schemapilot.models.credentials import AiConfig, BusinessInfo
from schemapilot.models.page import PageRecord

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)

PageSummary = Dict[str, str]


class AiAdapter(NamedTuple):
    """Provider-specific implementations of the five AI operations.

    Adapters return the provider's parsed JSON as-is; filtering against the
    known schema types happens once, in the dispatch layer.
    """

    validate_key: Callable[[AiConfig], Awaitable[bool]]
    suggest_types: Callable[[List[PageSummary], AiConfig], Awaitable[Any]]
    generate: Callable[[PageRecord, AiConfig, Optional[BusinessInfo]], Awaitable[Any]]
    audit_and_upgrade: Callable[[PageRecord, AiConfig, Optional[BusinessInfo]], Awaitable[Any]]
    detect_opportunities: Callable[[str, AiConfig], Awaitable[Any]]


def parse_json_response(text: Optional[str]) -> Any:
    """Decode a model reply, tolerating a surrounding Markdown code fence.

    Raises:
        AiError: if the reply is empty or not JSON.
    """
    if not text or not text.strip():
        raise AiError("AI provider returned an empty response.")
    match = _FENCED_JSON_RE.search(text)
    payload = match.group(1) if match else text
    try:
        return json.loads(payload.strip())
    except ValueError as exc:
        raise AiError(f"AI provider returned invalid JSON: {exc}") from exc
