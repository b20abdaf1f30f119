"""
Normalizers for transforming loader-native rows to canonical shape.
Pure functions - no IO, network, or side effects.
Minimal normalization - only when necessary.
"""

import math
from datetime import datetime, date, timezone
from typing import Dict, Any, List

from dateutil import parser as date_parser

from ingestion.transforms.validators import ValidationError, primary_key_field


# Fields that need coercion per entity; everything else passes through as-is
IDENTIFIER_FIELDS = {
    'ride': ['ride_id', 'driver_id', 'user_id'],
    'food_order': ['order_id', 'user_id', 'restaurant_id'],
    'driver': ['driver_id'],
    'restaurant': ['restaurant_id'],
}

NUMERIC_FIELDS = {
    'ride': ['distance_km', 'fare_amount'],
    'food_order': ['total_price', 'delivery_fee'],
    'driver': ['rating'],
    'restaurant': ['rating'],
}

TIMESTAMP_FIELDS = {
    'ride': ['ride_date_time'],
    'food_order': ['order_date_time'],
    'driver': [],
    'restaurant': [],
}


def _is_missing(value: Any) -> bool:
    # pandas hands back NaN for empty CSV cells
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def parse_identifier(value: Any) -> Any:
    """
    Coerce an identifier to int when it is integral, otherwise stripped string.

    CSV and SQLite loaders can hand back '7', 7.0 or 7 for the same key;
    all three must join against each other.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        # isdigit alone admits superscripts and other digits int() rejects
        if stripped.isascii() and stripped.lstrip('-').isdigit():
            return int(stripped)
        return stripped
    if hasattr(value, 'item'):
        # numpy scalar
        return parse_identifier(value.item())
    return value


def parse_number(value: Any) -> Any:
    """Coerce numeric strings and numpy scalars to float; leave the rest for validation."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return value
    if hasattr(value, 'item'):
        return parse_number(value.item())
    return value


def parse_timestamp(value: Any) -> Any:
    """
    Coerce a timestamp to a naive datetime.

    Accepts datetime, pandas Timestamp, date and ISO/SQL-style strings
    such as '2024-01-15 10:15:00'. Offset-bearing values are converted
    to UTC and made naive; naive values are taken as UTC already.
    """
    if hasattr(value, 'to_pydatetime'):
        value = value.to_pydatetime()
    if isinstance(value, str):
        value = date_parser.parse(value.strip())
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return value


def normalize_rows(raw_rows: List[Dict[str, Any]], entity_type: str) -> List[Dict[str, Any]]:
    """
    Transform loader-native rows to canonical rows for an entity type.

    Minimal normalization:
    - Missing cells (None, NaN, blank) are dropped so validation reports them
    - Identifiers to int where integral, otherwise stripped strings
    - Numeric fields to float
    - Timestamp strings to datetime objects

    Args:
        raw_rows: List of row dictionaries from a loader
        entity_type: One of 'ride', 'food_order', 'driver', 'restaurant'

    Returns:
        List of canonical row dictionaries, in input order

    Raises:
        ValidationError: If a timestamp cannot be parsed
    """
    if entity_type not in IDENTIFIER_FIELDS:
        raise ValidationError(f"Unknown entity type: {entity_type!r}", entity_type=entity_type)

    if not raw_rows:
        return []

    pk = primary_key_field(entity_type)
    normalized = []

    for raw in raw_rows:
        canonical = {
            key.strip() if isinstance(key, str) else key: value
            for key, value in raw.items()
            if not _is_missing(value)
        }

        for field in IDENTIFIER_FIELDS[entity_type]:
            if field in canonical:
                canonical[field] = parse_identifier(canonical[field])

        for field in NUMERIC_FIELDS[entity_type]:
            if field in canonical:
                canonical[field] = parse_number(canonical[field])

        for field in TIMESTAMP_FIELDS[entity_type]:
            if field in canonical:
                try:
                    canonical[field] = parse_timestamp(canonical[field])
                except (ValueError, OverflowError) as e:
                    raise ValidationError(
                        f"{field} is not a valid timestamp: {canonical[field]!r} ({e})",
                        entity_type=entity_type,
                        record_id=canonical.get(pk),
                        field=field
                    )

        for field in ['pickup_location', 'dropoff_location', 'name', 'cuisine_type',
                      'location', 'ride_status', 'order_status', 'vehicle_type']:
            if isinstance(canonical.get(field), str):
                canonical[field] = canonical[field].strip()

        normalized.append(canonical)

    return normalized
