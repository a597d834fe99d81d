from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SchemaStatus(str, Enum):
    UNKNOWN = "Unknown"
    FOUND = "Schema Found"
    NOT_FOUND = "Schema Not Found"
    CACHED = "Cached"
    AUDIT_RECOMMENDED = "Audit Recommended"
    ANALYSIS_FAILED = "Analysis Failed"


class SchemaType(str, Enum):
    ARTICLE = "Article"
    PRODUCT = "Product"
    RECIPE = "Recipe"
    LOCAL_BUSINESS = "LocalBusiness"
    ORGANIZATION = "Organization"
    WEB_PAGE = "WebPage"
    FAQ_PAGE = "FAQPage"
    HOW_TO = "HowTo"
    VIDEO_OBJECT = "VideoObject"


# Types that can be detected alongside the primary type of a page
OPPORTUNITY_TYPES = (SchemaType.FAQ_PAGE, SchemaType.HOW_TO)

# Pages in these states can be picked for generation or audit
SELECTABLE_STATUSES = (SchemaStatus.NOT_FOUND, SchemaStatus.AUDIT_RECOMMENDED)


class GenerationStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    GENERATING = "Generating"
    SUCCESS = "Success"
    FAILED = "Failed"


class ValidationStatus(str, Enum):
    NOT_VALIDATED = "NotValidated"
    VALIDATING = "Validating"
    VALID = "Valid"
    INVALID = "Invalid"


class InjectionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class ValidationDetail(BaseModel):
    code: str
    message: str
    property: Optional[str] = None


class PageRecord(BaseModel):
    """Everything the pipeline knows about one page URL.

    ``content`` is the scraped plain text handed to the AI provider.  It is
    dropped once the page's schema work is done so long runs do not keep
    every page body in memory.
    """

    url: str
    title: str = ""
    content: Optional[str] = None
    schema_status: SchemaStatus = SchemaStatus.UNKNOWN
    analysis_error: Optional[str] = None
    existing_schema: Optional[Any] = None
    generated_schema: Optional[Dict[str, Any]] = None
    selected_schema_type: SchemaType = SchemaType.ARTICLE
    opportunities: List[SchemaType] = Field(default_factory=list)
    generation_status: GenerationStatus = GenerationStatus.NOT_STARTED
    generation_error: Optional[str] = None
    validation_status: ValidationStatus = ValidationStatus.NOT_VALIDATED
    validation_errors: List[ValidationDetail] = Field(default_factory=list)
    validation_warnings: List[ValidationDetail] = Field(default_factory=list)
    injection_status: Optional[InjectionStatus] = None
    injection_error: Optional[str] = None

    @property
    def is_selectable(self) -> bool:
        return self.schema_status in SELECTABLE_STATUSES
