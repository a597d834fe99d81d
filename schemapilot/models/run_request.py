from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from schemapilot.models.credentials import AiConfig, BusinessInfo, WpCredentials
from schemapilot.models.page import SchemaType


class ConnectRequest(BaseModel):
    credentials: WpCredentials
    ai_config: AiConfig
    business_info: Optional[BusinessInfo] = None


class AnalyzeRequest(BaseModel):
    sitemap_urls: Optional[List[str]] = Field(
        default=None,
        description="Sitemaps whose pages should be analysed. All of them when omitted.",
    )


class SelectRequest(BaseModel):
    urls: List[str]


class SchemaTypeUpdate(BaseModel):
    url: str
    schema_type: SchemaType


class SchemaUpdate(BaseModel):
    url: str
    json_ld: Dict[str, Any] = Field(description="The edited JSON-LD document.")


class ValidateRequest(BaseModel):
    json_ld: Any
    schema_type: str = Field(examples=["Article"])
