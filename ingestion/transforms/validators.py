"""
Core validators for canonical relation rows.
Pure functions - no IO, network, or side effects.
"""

import math
from datetime import datetime
from typing import Dict, Any, Optional, Callable


RIDE_STATUSES = {'Completed', 'Canceled'}
ORDER_STATUSES = {'Completed', 'Canceled', 'Refunded'}
VEHICLE_TYPES = {'Car', 'Bike'}


class ValidationError(ValueError):
    """Raised when a record fails validation at load time."""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        record_id: Any = None,
        field: Optional[str] = None
    ):
        self.entity_type = entity_type
        self.record_id = record_id
        self.field = field
        context = []
        if entity_type is not None:
            context.append(f"entity={entity_type}")
        if record_id is not None:
            context.append(f"id={record_id}")
        if field is not None:
            context.append(f"field={field}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


def _require_keys(row: Dict[str, Any], required_keys: set, entity_type: str, pk: str) -> None:
    missing = required_keys - set(row.keys())
    if missing:
        raise ValidationError(
            f"Missing required keys: {sorted(missing)}",
            entity_type=entity_type,
            record_id=row.get(pk),
            field=sorted(missing)[0]
        )


def _check_identifier(row, field, entity_type, pk) -> None:
    value = row[field]
    # bool is an int subclass but never a valid identifier
    if value is None or isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(
            f"{field} must be int or string, got {type(value).__name__}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )
    if isinstance(value, str) and not value.strip():
        raise ValidationError(
            f"{field} must be non-empty",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )


def _check_string(row, field, entity_type, pk) -> None:
    if not isinstance(row[field], str):
        raise ValidationError(
            f"{field} must be string, got {type(row[field]).__name__}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )


def _check_number(row, field, entity_type, pk, low=None, high=None) -> None:
    value = row[field]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"{field} must be numeric, got {type(value).__name__}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )

    if not math.isfinite(value):
        raise ValidationError(
            f"{field} must be finite, got {value}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )

    if low is not None and value < low:
        raise ValidationError(
            f"{field} must be >= {low}, got {value}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )

    if high is not None and value > high:
        raise ValidationError(
            f"{field} must be <= {high}, got {value}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )


def _check_enum(row, field, allowed, entity_type, pk) -> None:
    if row[field] not in allowed:
        raise ValidationError(
            f"{field} must be one of {sorted(allowed)}, got {row[field]!r}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )


def _check_datetime(row, field, entity_type, pk) -> None:
    if not isinstance(row[field], datetime):
        raise ValidationError(
            f"{field} must be datetime, got {type(row[field]).__name__}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )
    if row[field].tzinfo is not None:
        raise ValidationError(
            f"{field} must be timezone-naive (UTC), got {row[field].isoformat()}",
            entity_type=entity_type, record_id=row.get(pk), field=field
        )


def validate_ride_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical ride row.

    Args:
        row: Dictionary containing ride data

    Raises:
        ValidationError: If validation fails
    """
    entity, pk = 'ride', 'ride_id'
    required_keys = {
        'ride_id', 'driver_id', 'user_id', 'pickup_location', 'dropoff_location',
        'distance_km', 'fare_amount', 'ride_status', 'ride_date_time'
    }
    _require_keys(row, required_keys, entity, pk)

    for field in ['ride_id', 'driver_id', 'user_id']:
        _check_identifier(row, field, entity, pk)

    for field in ['pickup_location', 'dropoff_location']:
        _check_string(row, field, entity, pk)

    _check_number(row, 'distance_km', entity, pk, low=0)
    _check_number(row, 'fare_amount', entity, pk, low=0)
    _check_enum(row, 'ride_status', RIDE_STATUSES, entity, pk)
    _check_datetime(row, 'ride_date_time', entity, pk)


def validate_food_order_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical food order row.

    Args:
        row: Dictionary containing food order data

    Raises:
        ValidationError: If validation fails
    """
    entity, pk = 'food_order', 'order_id'
    required_keys = {
        'order_id', 'user_id', 'restaurant_id', 'order_date_time',
        'order_status', 'total_price', 'delivery_fee'
    }
    _require_keys(row, required_keys, entity, pk)

    for field in ['order_id', 'user_id', 'restaurant_id']:
        _check_identifier(row, field, entity, pk)

    _check_datetime(row, 'order_date_time', entity, pk)
    _check_enum(row, 'order_status', ORDER_STATUSES, entity, pk)
    _check_number(row, 'total_price', entity, pk, low=0)
    _check_number(row, 'delivery_fee', entity, pk, low=0)


def validate_driver_row(row: Dict[str, Any]) -> None:
    """Validate a canonical driver row."""
    entity, pk = 'driver', 'driver_id'
    _require_keys(row, {'driver_id', 'name', 'rating', 'vehicle_type'}, entity, pk)

    _check_identifier(row, 'driver_id', entity, pk)
    _check_string(row, 'name', entity, pk)
    _check_number(row, 'rating', entity, pk, low=1, high=5)
    _check_enum(row, 'vehicle_type', VEHICLE_TYPES, entity, pk)


def validate_restaurant_row(row: Dict[str, Any]) -> None:
    """Validate a canonical restaurant row."""
    entity, pk = 'restaurant', 'restaurant_id'
    _require_keys(
        row, {'restaurant_id', 'name', 'cuisine_type', 'location', 'rating'}, entity, pk
    )

    _check_identifier(row, 'restaurant_id', entity, pk)
    for field in ['name', 'cuisine_type', 'location']:
        _check_string(row, field, entity, pk)
    _check_number(row, 'rating', entity, pk, low=0, high=5)


# entity_type -> (primary key, validator)
ENTITY_SCHEMAS: Dict[str, tuple] = {
    'ride': ('ride_id', validate_ride_row),
    'food_order': ('order_id', validate_food_order_row),
    'driver': ('driver_id', validate_driver_row),
    'restaurant': ('restaurant_id', validate_restaurant_row),
}


def get_validator(entity_type: str) -> Callable[[Dict[str, Any]], None]:
    """Return the row validator for an entity type."""
    if entity_type not in ENTITY_SCHEMAS:
        raise ValidationError(f"Unknown entity type: {entity_type!r}", entity_type=entity_type)
    return ENTITY_SCHEMAS[entity_type][1]


def primary_key_field(entity_type: str) -> str:
    """Return the primary key field name for an entity type."""
    if entity_type not in ENTITY_SCHEMAS:
        raise ValidationError(f"Unknown entity type: {entity_type!r}", entity_type=entity_type)
    return ENTITY_SCHEMAS[entity_type][0]
