"""Local structural validation of generated JSON-LD.

This is not a replacement for Google's Rich Results Test; it catches the
common structural problems quickly enough to run on every manual edit.
Nothing here touches the network.
"""

from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional, Union

from pydantic import AnyUrl, TypeAdapter, ValidationError

from schemapilot.models.page import SchemaType, ValidationDetail


class ValidationResult(NamedTuple):
    is_valid: bool
    errors: List[ValidationDetail]
    warnings: List[ValidationDetail]


class PropertyRules(NamedTuple):
    required: tuple
    recommended: tuple


VALIDATION_RULES: Dict[str, PropertyRules] = {
    SchemaType.ARTICLE.value: PropertyRules(
        required=("headline", "datePublished"),
        recommended=("author", "publisher", "image"),
    ),
    SchemaType.PRODUCT.value: PropertyRules(
        required=("name", "offers"),
        recommended=("image", "description", "sku", "brand"),
    ),
    SchemaType.RECIPE.value: PropertyRules(
        required=("name", "recipeIngredient"),
        recommended=("image", "author", "cookTime", "recipeInstructions"),
    ),
    SchemaType.LOCAL_BUSINESS.value: PropertyRules(
        required=("name", "address"),
        recommended=("telephone", "openingHoursSpecification", "geo"),
    ),
    SchemaType.ORGANIZATION.value: PropertyRules(
        required=("name",),
        recommended=("logo", "url", "address"),
    ),
    SchemaType.WEB_PAGE.value: PropertyRules(
        required=("headline",),
        recommended=("datePublished", "mainEntity"),
    ),
    SchemaType.FAQ_PAGE.value: PropertyRules(
        required=("mainEntity",),
        recommended=(),
    ),
    SchemaType.HOW_TO.value: PropertyRules(
        required=("name", "step"),
        recommended=("totalTime", "estimatedCost", "supply", "tool"),
    ),
    SchemaType.VIDEO_OBJECT.value: PropertyRules(
        required=("name", "description", "uploadDate", "thumbnailUrl"),
        recommended=("duration", "contentUrl"),
    ),
}

_url_adapter = TypeAdapter(AnyUrl)


def _has(entity: Any, prop: str) -> bool:
    """True when *entity* carries *prop* with a value other than null or ``""``."""
    if not isinstance(entity, dict) or prop not in entity:
        return False
    value = entity[prop]
    return value is not None and value != ""


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else [value]


def _is_valid_url(value: str) -> bool:
    try:
        _url_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


def _is_valid_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.strip())
    except ValueError:
        return False
    return True


def _type_matches(entity: Any, type_name: str) -> bool:
    if not isinstance(entity, dict):
        return False
    declared = entity.get("@type")
    if isinstance(declared, list):
        return type_name in declared
    return declared == type_name


def find_primary_entity(schema: Dict[str, Any], type_name: str) -> Optional[Dict[str, Any]]:
    """Return the entity of type *type_name*: the document itself or a ``@graph`` node."""
    if schema.get("@type") == type_name:
        return schema
    graph = schema.get("@graph")
    if isinstance(graph, list):
        for entity in graph:
            if _type_matches(entity, type_name):
                return entity
    return None


def _check_article(entity: Dict[str, Any], errors: List[ValidationDetail]) -> None:
    if _has(entity, "author"):
        for i, author in enumerate(_as_list(entity["author"])):
            if not isinstance(author, dict) or not _has(author, "name"):
                errors.append(ValidationDetail(
                    code="INVALID_STRUCTURE",
                    property=f"author[{i}]",
                    message=f"'author' #{i + 1} must be an object with a 'name' property.",
                ))
    if _has(entity, "publisher"):
        for i, publisher in enumerate(_as_list(entity["publisher"])):
            if not isinstance(publisher, dict) or not _has(publisher, "name"):
                errors.append(ValidationDetail(
                    code="INVALID_STRUCTURE",
                    property="publisher" if i == 0 else f"publisher[{i}]",
                    message="'publisher' must be an Organization object with a 'name' property.",
                ))
    if _has(entity, "datePublished") and not _is_valid_date(entity["datePublished"]):
        errors.append(ValidationDetail(
            code="INVALID_FORMAT",
            property="datePublished",
            message=(
                f"'datePublished' ({entity['datePublished']}) is not a valid "
                "ISO 8601 date format."
            ),
        ))


def _check_product(entity: Dict[str, Any], errors: List[ValidationDetail]) -> None:
    if not _has(entity, "offers"):
        return
    for i, offer in enumerate(_as_list(entity["offers"])):
        if not isinstance(offer, dict):
            errors.append(ValidationDetail(
                code="INVALID_STRUCTURE",
                property=f"offers[{i}]",
                message=f"'offers' #{i + 1} must be an Offer object.",
            ))
        elif not _has(offer, "price") or not _has(offer, "priceCurrency"):
            errors.append(ValidationDetail(
                code="MISSING_REQUIRED",
                property=f"offers[{i}]",
                message=f"'offers' #{i + 1} is missing required 'price' or 'priceCurrency'.",
            ))


def _check_local_business(entity: Dict[str, Any], errors: List[ValidationDetail]) -> None:
    if _has(entity, "address") and not isinstance(entity["address"], dict):
        errors.append(ValidationDetail(
            code="INVALID_STRUCTURE",
            property="address",
            message="'address' must be a PostalAddress object.",
        ))


def _check_images(entity: Dict[str, Any], errors: List[ValidationDetail]) -> None:
    if not _has(entity, "image"):
        return
    for i, image in enumerate(_as_list(entity["image"])):
        if isinstance(image, str) and not _is_valid_url(image):
            errors.append(ValidationDetail(
                code="INVALID_FORMAT",
                property=f"image[{i}]",
                message=f"'image' #{i + 1} URL is not valid.",
            ))
        elif isinstance(image, dict) and not _has(image, "url"):
            errors.append(ValidationDetail(
                code="MISSING_REQUIRED",
                property=f"image[{i}]",
                message=f"'image' #{i + 1} object is missing required 'url' property.",
            ))


_DEEP_CHECKS = {
    SchemaType.ARTICLE.value: _check_article,
    SchemaType.PRODUCT.value: _check_product,
    SchemaType.LOCAL_BUSINESS.value: _check_local_business,
}


def validate(schema: Any, target_type: Union[SchemaType, str]) -> ValidationResult:
    """Check *schema* against the rules for *target_type*.

    Required properties missing from the primary entity are errors,
    recommended ones are warnings.  The type-specific structure checks only
    run once every required property is present.
    """
    type_name = target_type.value if isinstance(target_type, SchemaType) else str(target_type)
    errors: List[ValidationDetail] = []
    warnings: List[ValidationDetail] = []

    if not isinstance(schema, dict):
        errors.append(ValidationDetail(
            code="GENERIC_ERROR", message="Schema is not a valid JSON object."
        ))
        return ValidationResult(False, errors, warnings)

    entity = find_primary_entity(schema, type_name)
    if entity is None:
        errors.append(ValidationDetail(
            code="MISSING_PRIMARY_ENTITY",
            message=(
                f'The primary entity with "@type": "{type_name}" could not be found '
                "in the schema graph."
            ),
        ))
        return ValidationResult(False, errors, warnings)

    rules = VALIDATION_RULES.get(type_name)
    if rules is None:
        warnings.append(ValidationDetail(
            code="GENERIC_ERROR",
            message=(
                f'No specific validation rules are defined for "{type_name}". '
                "Only basic checks were performed."
            ),
        ))
        return ValidationResult(True, errors, warnings)

    for prop in rules.required:
        if not _has(entity, prop):
            errors.append(ValidationDetail(
                code="MISSING_REQUIRED",
                property=prop,
                message=f"Missing required property: '{prop}'.",
            ))

    for prop in rules.recommended:
        if not _has(entity, prop):
            warnings.append(ValidationDetail(
                code="MISSING_RECOMMENDED",
                property=prop,
                message=f"Missing recommended property: '{prop}'.",
            ))

    if not errors:
        deep_check = _DEEP_CHECKS.get(type_name)
        if deep_check is not None:
            deep_check(entity, errors)
        _check_images(entity, errors)

    return ValidationResult(not errors, errors, warnings)
