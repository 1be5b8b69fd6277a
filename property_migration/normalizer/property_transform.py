"""
Property Row Transformation

This module turns one source document into a row of the ``properties`` table.
It handles field mapping, type conversions, default values and the derived
columns (property code, title, compound name).

Key Responsibilities:
- Map source field names to column names
- Clamp numeric values to what their columns can hold
- Apply configured default ids when a dimension cannot be resolved
- Derive a deterministic property code so reruns produce the same row
"""

import logging
from typing import Any, Optional, Protocol

from ..common.config_loader import DefaultIds
from ..source_extractor.base import SourceRecord
from .fields import (
    canonicalize,
    parse_boolean,
    parse_decimal,
    parse_embedded_array,
    parse_integer,
    parse_timestamp,
    safe_string,
    truncate,
)

logger = logging.getLogger(__name__)


# Order matters: the first delimiter found wins
COMPOUND_DELIMITERS = (" - ", " in ", " at ", " located in ", " for rent in ", " for sale in ")

MAX_ROOMS = 20
TITLE_MAX_LENGTH = 200
FALLBACK_TITLE_LENGTH = 50
FLOOR_MAX_LENGTH = 20
LISTING_TYPE_MAX_LENGTH = 10
LISTING_STATUS_MAX_LENGTH = 20
SHORT_TEXT_MAX_LENGTH = 100

RENT_TOKENS = ("rent", "إيجار")
SALE_TOKENS = ("sale", "بيع")
STATUS_MAP = {
    "available": "Available",
    "sold": "Sold",
    "reserved": "Reserved",
    "rented": "Rented",
}


class NormalizationError(Exception):
    """Raised when a source document cannot be turned into a property row."""
    pass


class ResolvesDimensions(Protocol):
    def resolve_record(self, record: SourceRecord) -> Any: ...


def synthesize_property_code(
    external_id: str,
    property_number: Optional[str] = None,
    prefix: str = "PROP_",
    suffix_length: int = 8,
) -> str:
    """
    Return the explicit property number, or a code derived from the external id.

    Examples:
        >>> synthesize_property_code("65a1f0c2e4b0d9a1b2c3", None)
        'PROP_D9A1B2C3'
        >>> synthesize_property_code("65a1f0c2e4b0d9a1b2c3", "P-1001")
        'P-1001'
    """
    if property_number and property_number.strip():
        return property_number.strip()[:SHORT_TEXT_MAX_LENGTH]
    return f"{prefix}{external_id[-suffix_length:].upper()}"


def split_compound_title(value: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Split a combined "title <delimiter> compound" field.

    Returns:
        ``(title, compound_name)``; compound is None when no delimiter is found,
        in which case the title is the (shortened) original text

    Examples:
        >>> split_compound_title("Apartment in Mivida")
        ('Apartment', 'Mivida')
        >>> split_compound_title("Mivida")
        ('Mivida', None)
    """
    if not value or not value.strip():
        return None, None

    text = value.strip()
    for delimiter in COMPOUND_DELIMITERS:
        if delimiter in text:
            title, _, rest = text.partition(delimiter)
            # Only the segment right after the delimiter names the compound
            compound = rest.split(delimiter, 1)[0]
            return title.strip() or None, compound.strip() or None

    if len(text) > FALLBACK_TITLE_LENGTH:
        return text[:FALLBACK_TITLE_LENGTH] + "...", None
    return text, None


def derive_title(
    compound_title: Optional[str], description: Optional[str], property_code: str
) -> str:
    """Title from the compound field, else the description, else the code."""
    if compound_title:
        return compound_title[:TITLE_MAX_LENGTH]
    if description:
        return description[:TITLE_MAX_LENGTH]
    return f"Property {property_code}"


def normalize_listing_type(value: Optional[str]) -> Optional[str]:
    """
    Map free text to 'Rent' or 'Sale'.

    Unrecognized values are kept, truncated to the column width.

    Examples:
        >>> normalize_listing_type("For Rent")
        'Rent'
        >>> normalize_listing_type("بيع")
        'Sale'
    """
    if not value:
        return None
    lower = value.lower()
    if any(token in lower for token in RENT_TOKENS):
        return "Rent"
    if any(token in lower for token in SALE_TOKENS):
        return "Sale"
    return value[:LISTING_TYPE_MAX_LENGTH]


def normalize_listing_status(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return STATUS_MAP.get(canonicalize(value), value[:LISTING_STATUS_MAX_LENGTH])


def build_property_row(
    record: SourceRecord,
    resolver: ResolvesDimensions,
    defaults: DefaultIds,
) -> dict[str, Any]:
    """
    Build the ``properties`` row for one source record.

    Dimension ids come from ``resolver.resolve_record``; any id the resolver
    could not produce falls back to the configured default.

    Args:
        record: Source record
        resolver: Object exposing ``resolve_record(record)``
        defaults: Configured default ids, currency and code format

    Returns:
        Column -> value mapping ready for upsert on ``external_id``

    Raises:
        NormalizationError: If the record has no external id
    """
    if not record.external_id:
        raise NormalizationError("Source document has no $id")

    dims = resolver.resolve_record(record)

    property_code = synthesize_property_code(
        record.external_id,
        record.text("propertyNumber"),
        prefix=defaults.code_prefix,
        suffix_length=defaults.code_suffix_length,
    )
    compound_title, compound_name = split_compound_title(record.text("compoundName"))
    description = record.text("description")

    def _or_default(value: Optional[int], default: Optional[int]) -> Optional[int]:
        return value if value is not None else default

    row = {
        "external_id": record.external_id,
        "property_code": property_code,
        "title": derive_title(compound_title, description, property_code),
        "description": description,
        "compound_name": truncate(compound_name, SHORT_TEXT_MAX_LENGTH * 2),
        # Dimension references
        "area_id": _or_default(dims.area_id, defaults.area_id),
        "category_id": _or_default(dims.category_id, defaults.category_id),
        "type_id": _or_default(dims.type_id, defaults.type_id),
        "compound_id": dims.compound_id,
        "primary_contact_id": dims.contact_id,
        # Specifications
        "listing_type": normalize_listing_type(record.text("unitFor")),
        "listing_status": normalize_listing_status(record.text("status")),
        "bedrooms": parse_integer(record.raw("rooms"), 0, MAX_ROOMS),
        "bathrooms": parse_integer(record.raw("bathrooms"), 0, MAX_ROOMS),
        "floor_number": truncate(record.text("theFloors"), FLOOR_MAX_LENGTH),
        # Measurements
        "land_area": parse_decimal(record.raw("landArea")),
        "building_area": parse_decimal(record.raw("building")),
        "space_earth": parse_decimal(record.raw("spaceEerth")),
        "space_unit": parse_decimal(record.raw("spaceUnit")),
        "space_guard": parse_decimal(record.raw("spaceGuard")),
        # Financials
        "price": parse_decimal(record.raw("totalPrice")),
        "currency": truncate(record.text("currency"), 10) or defaults.currency,
        "down_payment": parse_decimal(record.raw("downPayment")),
        "price_per_meter": parse_decimal(record.raw("PricePerMeter")),
        "monthly_payment": parse_decimal(record.raw("monthly")),
        "installment_plan": parse_embedded_array(record.raw("installment")),
        # Metadata
        "activity_type": truncate(safe_string(record.raw("activity")), SHORT_TEXT_MAX_LENGTH),
        "offered_by": truncate(safe_string(record.raw("propertyOfferedBy")), SHORT_TEXT_MAX_LENGTH),
        "inside_compound": parse_boolean(record.raw("inOrOutSideCompound")),
        "phase_name": truncate(safe_string(record.raw("phase")), SHORT_TEXT_MAX_LENGTH),
        "is_liked": parse_boolean(record.raw("liked")),
        "featured_home": parse_boolean(record.raw("inHome")),
        "source_created_at": parse_timestamp(record.created_at),
        "source_updated_at": parse_timestamp(record.updated_at),
    }

    logger.debug(
        "Built property row",
        extra={"external_id": record.external_id, "property_code": property_code},
    )
    return row
