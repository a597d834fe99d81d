"""WordPress REST API: credential checks and schema injection via post meta."""

import asyncio
import json
import logging
from typing import Any, Callable, List, NamedTuple, Optional
from urllib.parse import urlparse

import httpx

from schemapilot.exceptions import NetworkError
from schemapilot.models.credentials import WpCredentials
from schemapilot.models.page import InjectionStatus, PageRecord
from schemapilot.services.fetcher import fetch

logger = logging.getLogger(__name__)

SCHEMA_META_KEY = "ai_generated_schema"
INJECTION_BATCH_SIZE = 5
_WP_RESOURCES = ("posts", "pages")

# Installed by the user (theme functions.php or a snippets plugin).  It exposes
# the meta key to the REST API and prints the stored JSON-LD in <head>.
RENDER_SNIPPET = f"""\
add_action('wp_head', function() {{
    if (is_singular()) {{
        $schema = get_post_meta(get_the_ID(), '{SCHEMA_META_KEY}', true);
        if (!empty($schema)) {{
            echo '<script type="application/ld+json">' . $schema . '</script>';
        }}
    }}
}});

add_action('init', function() {{
    register_post_meta('', '{SCHEMA_META_KEY}', [
        'show_in_rest' => true,
        'single' => true,
        'type' => 'string',
        'auth_callback' => function() {{
            return current_user_can('edit_posts');
        }}
    ]);
}});
"""


class InjectionResult(NamedTuple):
    success: bool
    error: Optional[str] = None


def _api_url(creds: WpCredentials, path: str) -> str:
    return f"{creds.site_url.rstrip('/')}/wp-json/wp/v2/{path}"


def _auth(creds: WpCredentials) -> httpx.BasicAuth:
    return httpx.BasicAuth(creds.username, creds.app_password)


def slug_from_url(url: str) -> Optional[str]:
    """Return the last non-empty path segment of *url*, or ``None``."""
    segments = [part for part in urlparse(url).path.split("/") if part]
    return segments[-1] if segments else None


async def validate_credentials(
    creds: WpCredentials, *, client: Optional[httpx.AsyncClient] = None
) -> bool:
    """Return *True* when the Application Password authenticates. Never raises."""
    try:
        response = await fetch(
            _api_url(creds, "users/me"), allow_proxy=False, client=client, auth=_auth(creds)
        )
    except (ValueError, NetworkError) as exc:
        logger.warning("WP credential validation error for %s: %s", creds.site_url, exc)
        return False
    return response.is_success


async def find_content_id(
    creds: WpCredentials, url: str, *, client: Optional[httpx.AsyncClient] = None
) -> Optional[int]:
    """Resolve *url* to a post or page id by slug; posts are tried first."""
    slug = slug_from_url(url)
    if not slug:
        return None

    for resource in _WP_RESOURCES:
        try:
            response = await fetch(
                _api_url(creds, resource),
                allow_proxy=False,
                client=client,
                auth=_auth(creds),
                params={"slug": slug},
            )
        except (ValueError, NetworkError) as exc:
            logger.warning("WP lookup of %s in %s failed: %s", slug, resource, exc)
            continue
        if not response.is_success:
            continue
        try:
            items = response.json()
        except ValueError:
            continue
        if isinstance(items, list) and items and isinstance(items[0], dict) and "id" in items[0]:
            return items[0]["id"]

    logger.warning("Could not find a post or page with slug: %s", slug)
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Failed to inject schema. Status: {response.status_code}"


async def inject_schema(
    creds: WpCredentials,
    url: str,
    schema: Any,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> InjectionResult:
    """Store *schema* in the :data:`SCHEMA_META_KEY` meta field of *url*'s post/page.

    The id may belong to either content type, so the update is tried against
    posts, then pages.  A 404 moves on to the next type; any other error
    status ends the attempt with the API's own message.
    """
    content_id = await find_content_id(creds, url, client=client)
    if content_id is None:
        return InjectionResult(
            False, f"Could not find a matching post/page in WordPress for URL: {url}"
        )

    body = {"meta": {SCHEMA_META_KEY: json.dumps(schema, ensure_ascii=False)}}
    for resource in _WP_RESOURCES:
        try:
            response = await fetch(
                _api_url(creds, f"{resource}/{content_id}"),
                method="POST",
                allow_proxy=False,
                client=client,
                auth=_auth(creds),
                json=body,
            )
        except (ValueError, NetworkError) as exc:
            logger.warning("Injection into %s/%s failed, trying next type: %s", resource, content_id, exc)
            continue

        if response.is_success:
            return InjectionResult(True)
        if response.status_code != 404:
            return InjectionResult(False, _error_message(response))

    return InjectionResult(
        False, f"Could not find post/page with ID {content_id} in common post types."
    )


async def _inject_record(
    creds: WpCredentials, record: PageRecord, client: Optional[httpx.AsyncClient]
) -> None:
    record.injection_status = InjectionStatus.PENDING
    try:
        result = await inject_schema(creds, record.url, record.generated_schema, client=client)
    except Exception as exc:
        logger.error("Unexpected injection failure for %s: %r", record.url, exc)
        result = InjectionResult(False, str(exc) or "Unknown error")

    if result.success:
        record.injection_status = InjectionStatus.SUCCESS
        record.injection_error = None
    else:
        record.injection_status = InjectionStatus.FAILED
        record.injection_error = result.error
        logger.warning("Injection failed for %s: %s", record.url, result.error)


async def inject_batch(
    creds: WpCredentials,
    records: List[PageRecord],
    *,
    batch_size: int = INJECTION_BATCH_SIZE,
    progress: Optional[Callable[[int, int], None]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[PageRecord]:
    """Inject every record's schema, *batch_size* at a time. Never raises.

    Outcomes are written onto the records themselves.
    """
    total = len(records)
    for start in range(0, total, batch_size):
        batch = records[start:start + batch_size]
        await asyncio.gather(*(_inject_record(creds, record, client) for record in batch))
        if progress:
            progress(min(start + len(batch), total), total)
    return records
