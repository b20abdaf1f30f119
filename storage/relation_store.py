"""
Relation store - immutable in-memory home for the four analytical relations.
Records are validated on load, indexed by primary key and foreign keys,
and exposed read-only to every query.
"""

import logging
from types import MappingProxyType
from typing import Dict, Any, List, Optional, Iterable, Mapping, Tuple

import pandas as pd

from ingestion.transforms.validators import ValidationError, ENTITY_SCHEMAS


logger = logging.getLogger(__name__)

ENTITY_TYPES = ('ride', 'food_order', 'driver', 'restaurant')

# Secondary indices built at load time
FOREIGN_KEY_FIELDS = {
    'ride': ('driver_id', 'user_id'),
    'food_order': ('restaurant_id', 'user_id'),
    'driver': (),
    'restaurant': (),
}

# (child entity, field) -> parent entity
REFERENCES = {
    ('ride', 'driver_id'): 'driver',
    ('food_order', 'restaurant_id'): 'restaurant',
}


class RelationStoreError(Exception):
    """Raised when the store is used incorrectly (unknown relation, double load)."""
    pass


class NotFoundError(LookupError):
    """Raised when a key lookup finds no record."""

    def __init__(self, entity_type: str, key: Any, referenced_by: Optional[str] = None):
        self.entity_type = entity_type
        self.key = key
        self.referenced_by = referenced_by
        message = f"No {entity_type} with key {key!r}"
        if referenced_by:
            message += f" (referenced by {referenced_by})"
        super().__init__(message)


class RelationStore:
    """
    Holds rides, food orders, drivers and restaurants as ordered, read-only
    record sequences.

    Each relation can be loaded exactly once. Nothing is stored unless every
    record in the batch validates, so queries never see partially-invalid data.
    """

    def __init__(self):
        self._records: Dict[str, Tuple[Mapping[str, Any], ...]] = {}
        self._by_key: Dict[str, Dict[Any, Mapping[str, Any]]] = {}
        self._indices: Dict[Tuple[str, str], Dict[Any, Tuple[Mapping[str, Any], ...]]] = {}

    @classmethod
    def from_records(
        cls,
        rides: Optional[Iterable[Dict[str, Any]]] = None,
        food_orders: Optional[Iterable[Dict[str, Any]]] = None,
        drivers: Optional[Iterable[Dict[str, Any]]] = None,
        restaurants: Optional[Iterable[Dict[str, Any]]] = None,
        check_references: bool = True
    ) -> 'RelationStore':
        """
        Build a store from record collections and verify foreign keys.

        Relations passed as None are left unloaded; an empty list loads an
        empty relation.

        Raises:
            ValidationError: If any record is malformed
            NotFoundError: If a ride's driver or an order's restaurant is missing
        """
        store = cls()
        for entity_type, records in (
            ('driver', drivers),
            ('restaurant', restaurants),
            ('ride', rides),
            ('food_order', food_orders),
        ):
            if records is not None:
                store.load(entity_type, records)

        if check_references:
            store.check_references()

        return store

    def load(self, entity_type: str, records: Iterable[Dict[str, Any]]) -> int:
        """
        Validate and store a relation.

        Args:
            entity_type: One of ENTITY_TYPES
            records: Canonical row dictionaries

        Returns:
            Number of records loaded

        Raises:
            RelationStoreError: Unknown entity type or relation already loaded
            ValidationError: Malformed record or duplicate primary key
        """
        self._check_entity_type(entity_type)
        if entity_type in self._records:
            raise RelationStoreError(f"Relation {entity_type!r} is already loaded")

        pk, validator = ENTITY_SCHEMAS[entity_type]

        # Validate the whole batch before storing anything
        rows = [dict(record) for record in records]
        by_key: Dict[Any, Mapping[str, Any]] = {}
        frozen = []
        for row in rows:
            validator(row)
            key = row[pk]
            if key in by_key:
                raise ValidationError(
                    f"Duplicate primary key {key!r}",
                    entity_type=entity_type, record_id=key, field=pk
                )
            record = MappingProxyType(row)
            by_key[key] = record
            frozen.append(record)

        self._records[entity_type] = tuple(frozen)
        self._by_key[entity_type] = by_key

        for field in FOREIGN_KEY_FIELDS[entity_type]:
            index: Dict[Any, List[Mapping[str, Any]]] = {}
            for record in frozen:
                index.setdefault(record[field], []).append(record)
            self._indices[(entity_type, field)] = {
                value: tuple(matches) for value, matches in index.items()
            }

        logger.info("Loaded %d %s records", len(frozen), entity_type)
        return len(frozen)

    def is_loaded(self, entity_type: str) -> bool:
        self._check_entity_type(entity_type)
        return entity_type in self._records

    def scan(self, entity_type: str) -> Tuple[Mapping[str, Any], ...]:
        """Return all records of a relation in load order (empty if not loaded)."""
        self._check_entity_type(entity_type)
        return self._records.get(entity_type, ())

    def get(self, entity_type: str, key: Any) -> Mapping[str, Any]:
        """
        Look up a record by primary key.

        Raises:
            NotFoundError: If no record has that key
        """
        self._check_entity_type(entity_type)
        record = self._by_key.get(entity_type, {}).get(key)
        if record is None:
            raise NotFoundError(entity_type, key)
        return record

    def lookup(self, entity_type: str, field: str, value: Any) -> Tuple[Mapping[str, Any], ...]:
        """
        Return records whose foreign key field equals value.

        Only fields in FOREIGN_KEY_FIELDS are indexed.
        """
        self._check_entity_type(entity_type)
        if field not in FOREIGN_KEY_FIELDS[entity_type]:
            raise RelationStoreError(f"{entity_type}.{field} is not an indexed field")
        return self._indices.get((entity_type, field), {}).get(value, ())

    def check_references(self) -> None:
        """
        Verify every foreign key points at an existing parent record.

        References into a relation that was never loaded are not checked.

        Raises:
            NotFoundError: On the first dangling reference, in load order
        """
        for (child, field), parent in REFERENCES.items():
            if child not in self._records or parent not in self._records:
                continue
            pk = ENTITY_SCHEMAS[child][0]
            parents = self._by_key[parent]
            for record in self._records[child]:
                if record[field] not in parents:
                    raise NotFoundError(
                        parent, record[field],
                        referenced_by=f"{child} {record[pk]!r}.{field}"
                    )

    def counts(self) -> Dict[str, int]:
        """Row counts per relation (0 for relations not loaded)."""
        return {entity: len(self._records.get(entity, ())) for entity in ENTITY_TYPES}

    def to_frame(self, entity_type: str) -> pd.DataFrame:
        """Copy a relation into a DataFrame for ad-hoc inspection."""
        return pd.DataFrame([dict(record) for record in self.scan(entity_type)])

    def _check_entity_type(self, entity_type: str) -> None:
        if entity_type not in ENTITY_TYPES:
            raise RelationStoreError(
                f"Unknown entity type {entity_type!r}; expected one of {ENTITY_TYPES}"
            )
