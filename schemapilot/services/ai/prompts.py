"""Prompt text shared by the AI adapters."""

import json
from typing import Any, List, Optional

from schemapilot.models.credentials import BusinessInfo
from schemapilot.models.page import OPPORTUNITY_TYPES, PageRecord, SchemaType

CONTENT_SNIPPET_CHARS = 4000
OPPORTUNITY_SNIPPET_CHARS = 3000

SUGGEST_SYSTEM = (
    "You are an SEO expert. Suggest the single most appropriate schema.org type "
    "for each webpage you are given. Only choose from the allowed types. Your "
    "response must be a valid JSON object that maps each URL to its type."
)

GENERATE_SYSTEM = (
    "Act as an expert SEO engineer and knowledge graph specialist. Generate a "
    "deeply interconnected, E-E-A-T rich JSON-LD schema graph for a webpage based "
    "on its content. Your output must be a valid JSON object representing the "
    "schema, without Markdown formatting."
)

AUDIT_SYSTEM = (
    "Act as an expert SEO engineer and knowledge graph specialist. Audit an "
    "existing JSON-LD schema for a webpage, fix what is wrong and upgrade it to a "
    "complete, interconnected schema graph. Your output must be a valid JSON "
    "object representing the upgraded schema, without Markdown formatting."
)

OPPORTUNITY_SYSTEM = (
    "You are an SEO expert who spots rich-result opportunities in page content. "
    "Respond with a JSON object only."
)

_DIRECTIVES = """
**Your Directives:**

1.  **Content-First Analysis:** Base the schema on the **Key Page Content**. Extract real
    entities, facts and relationships from the text. DO NOT invent information that is not
    present. If content is missing, rely only on the Title and URL.

2.  **Knowledge Graph Fragment:** Construct a `@graph` of interconnected entities. Use `@id`
    with fragment identifiers (e.g. "#article", "#author") to link entities together.

3.  **Primary Entity:** The main entity must be of type "{schema_type}" with the `@id`
    "#{schema_id}". It should be the most detailed entity, populated from the page content.

4.  **E-E-A-T Signals:**
    *   **Author (`Person`):** If the content names an author, create a `Person` with `@id`,
        `name` and any other details found. Link the primary entity to it.
    *   **Publisher (`Organization`):** Create a publisher `Organization`. Use the business
        name if provided, otherwise infer it from the content. Link the primary entity to it.

5.  **WebPage and Context:** Always include a `WebPage` linked to the primary entity via
    `mainEntityOfPage`. Include a `BreadcrumbList` if the page structure can be inferred.

6.  **Google Compliance:**
    *   Dates (`datePublished`, `dateModified`) must be ISO 8601.
    *   Images (`image`, `logo`) must be `ImageObject`s with `url`, `width` and `height`.
    *   Populate every required property of the chosen types from the content.
"""


def business_directive(schema_type: SchemaType, business: Optional[BusinessInfo]) -> str:
    """Extra instructions derived from the user's business details."""
    if schema_type == SchemaType.LOCAL_BUSINESS:
        if business and business.address:
            return (
                "\n**Local Business Information Provided:**\n"
                f"*   Business Name: {business.name or 'N/A'}\n"
                f"*   Address: {business.address}\n"
                f"*   Phone: {business.phone or 'N/A'}\n"
                "You MUST use this exact information to construct the 'LocalBusiness' "
                "schema. Include 'address' as a 'PostalAddress' object."
            )
        return (
            "\n**CRITICAL Local Business Directive:**\n"
            "A 'LocalBusiness' schema was requested but no structured address was given.\n"
            "1.  Scan the Key Page Content for a full physical address (street, city, "
            "state, postal code).\n"
            "2.  If a plausible, complete address is found, use it for the 'LocalBusiness' "
            "schema.\n"
            "3.  Otherwise you MUST NOT invent one. Generate an 'Organization' schema "
            "instead and add to its 'description': \"A LocalBusiness schema could not be "
            "generated as a physical address was not found on the page.\""
        )
    if schema_type in (SchemaType.ORGANIZATION, SchemaType.ARTICLE) and business and business.name:
        return (
            "\n**Organization Information Provided:**\n"
            f"*   Name: {business.name}\n"
            "Use this name for the 'publisher' or 'provider' `Organization`. This is a "
            "digital entity; do not invent a physical address unless the page content "
            "states one."
        )
    return ""


def _page_block(page: PageRecord) -> str:
    snippet = (page.content or "")[:CONTENT_SNIPPET_CHARS]
    return (
        "**Webpage Details:**\n"
        f"- **URL:** {page.url}\n"
        f"- **Page Title:** \"{page.title or 'Untitled Page'}\"\n"
        f"- **Primary Schema Type Requested:** \"{page.selected_schema_type.value}\"\n"
        "- **Key Page Content:**\n"
        "---\n"
        f"{snippet or '(No content scraped)'}\n"
        "---"
    )


def _directives(page: PageRecord) -> str:
    schema_type = page.selected_schema_type.value
    return _DIRECTIVES.format(schema_type=schema_type, schema_id=schema_type.lower())


def suggestion_prompt(pages: List[dict]) -> str:
    allowed = ", ".join(t.value for t in SchemaType)
    listing = "\n".join(f"- URL: {p['url']}\n  Title: \"{p['title']}\"" for p in pages)
    return (
        "Analyze the following webpage URLs and titles. For each one, suggest the single "
        "most appropriate schema.org type.\n\n"
        f"**Allowed Schema Types:**\n[{allowed}]\n\n"
        f"**Webpage List:**\n{listing}\n\n"
        "Your response must be a valid JSON object mapping each full URL to its suggested "
        "schema type string.\n"
        'Example: {"https://example.com/product/widget": "Product", '
        '"https://example.com/blog/news": "Article"}'
    )


def generation_prompt(page: PageRecord, business: Optional[BusinessInfo]) -> str:
    return "\n".join(
        (
            _page_block(page),
            business_directive(page.selected_schema_type, business),
            _directives(page),
            "Respond with the JSON object and nothing else.",
        )
    )


def audit_prompt(page: PageRecord, business: Optional[BusinessInfo]) -> str:
    existing: Any = page.existing_schema
    return "\n".join(
        (
            _page_block(page),
            "**Existing Schema Found On The Page:**",
            "```json",
            json.dumps(existing, indent=2, ensure_ascii=False),
            "```",
            business_directive(page.selected_schema_type, business),
            "**Audit Instructions:** Keep every correct fact from the existing schema, "
            "remove anything the page content contradicts, add missing required and "
            "recommended properties, and restructure it to follow the directives below.",
            _directives(page),
            "Respond with the upgraded JSON object and nothing else.",
        )
    )


def opportunity_prompt(content: str) -> str:
    allowed = ", ".join(t.value for t in OPPORTUNITY_TYPES)
    return (
        "Read the page content below and decide which of these additional schema.org "
        f"types it clearly supports: [{allowed}].\n"
        "FAQPage needs explicit question-and-answer pairs. HowTo needs ordered, "
        "instructional steps.\n\n"
        "---\n"
        f"{content[:OPPORTUNITY_SNIPPET_CHARS]}\n"
        "---\n\n"
        'Respond with a JSON object of the form {"opportunities": ["FAQPage"]}. '
        "Use an empty list when none apply."
    )
