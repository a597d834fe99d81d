import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


class WpCredentials(BaseModel):
    """WordPress site plus an Application Password for its REST API."""

    site_url: str = Field(min_length=1, examples=["https://example.com"])
    sitemap_url: Optional[str] = Field(
        default=None,
        description="Explicit sitemap location. Defaults to <site_url>/sitemap.xml.",
    )
    username: str = Field(min_length=1)
    app_password: str = Field(min_length=1)

    @field_validator("site_url")
    @classmethod
    def _normalise_site_url(cls, value: str) -> str:
        # The REST API is always reached over https, whatever the user typed
        host = _SCHEME_RE.sub("", value.strip()).rstrip("/")
        if not host:
            raise ValueError("site_url must name a host.")
        return f"https://{host}"

    @field_validator("sitemap_url")
    @classmethod
    def _blank_sitemap_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value.strip() if value else value


class AiProvider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    CLAUDE = "claude"
    GROQ = "groq"
    OPENROUTER = "openrouter"


class AiConfig(BaseModel):
    """AI provider settings. Held for the lifetime of a run only."""

    provider: AiProvider
    api_key: str = Field(min_length=1)
    model: Optional[str] = Field(
        default=None,
        description="Model name. Each provider falls back to its own default.",
    )


class BusinessInfo(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
