"""
Relation loaders - read rides, food orders, drivers and restaurants from
CSV files or an existing SQLite database into a RelationStore.
Thin IO layer: read, normalize, validate. No schema creation, no writes.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

import pandas as pd

from ingestion.transforms.normalizers import normalize_rows
from storage.relation_store import RelationStore


logger = logging.getLogger(__name__)

# entity_type -> table name / CSV file stem
TABLE_NAMES = {
    'ride': 'rides',
    'food_order': 'food_orders',
    'driver': 'drivers',
    'restaurant': 'restaurants',
}


class LoaderError(Exception):
    """Raised when a source cannot be read."""
    pass


def _frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    # object dtype keeps ints as ints and NaN as NaN for the normalizer
    return df.astype(object).to_dict('records')


def read_csv_relation(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Read one CSV file into raw row dictionaries.

    Raises:
        LoaderError: If the file is missing or unreadable
    """
    path = Path(path)
    if not path.exists():
        raise LoaderError(f"CSV file not found: {path}")

    try:
        df = pd.read_csv(path)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise LoaderError(f"Failed to read {path}: {e}")

    df.columns = [str(column).strip() for column in df.columns]
    return _frame_to_rows(df)


def load_csv_directory(
    data_dir: Union[str, Path],
    required: Optional[List[str]] = None,
    check_references: bool = True
) -> RelationStore:
    """
    Build a store from rides.csv, food_orders.csv, drivers.csv and restaurants.csv.

    Files missing from the directory leave their relation unloaded, unless the
    entity type is listed in required.

    Args:
        data_dir: Directory holding the CSV files
        required: Entity types that must be present (default: none)
        check_references: Verify driver and restaurant foreign keys

    Returns:
        Loaded RelationStore

    Raises:
        LoaderError: Missing directory or required file
        ValidationError: Malformed record
        NotFoundError: Dangling foreign key
    """
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise LoaderError(f"Data directory not found: {data_dir}")

    required = required or []
    relations: Dict[str, Optional[List[Dict[str, Any]]]] = {}

    for entity_type, stem in TABLE_NAMES.items():
        path = data_dir / f'{stem}.csv'
        if not path.exists():
            if entity_type in required:
                raise LoaderError(f"Required file missing: {path}")
            logger.warning("No %s found, %s relation not loaded", path.name, entity_type)
            relations[entity_type] = None
            continue
        relations[entity_type] = normalize_rows(read_csv_relation(path), entity_type)

    return RelationStore.from_records(
        rides=relations['ride'],
        food_orders=relations['food_order'],
        drivers=relations['driver'],
        restaurants=relations['restaurant'],
        check_references=check_references
    )


def _existing_tables(conn: sqlite3.Connection) -> set:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in cursor.fetchall()}


def read_sqlite_relation(conn: sqlite3.Connection, entity_type: str) -> List[Dict[str, Any]]:
    """
    Read one relation table into raw row dictionaries, in rowid order.

    Raises:
        LoaderError: Unknown entity type or query failure
    """
    if entity_type not in TABLE_NAMES:
        raise LoaderError(f"Unknown entity type: {entity_type!r}")

    table = TABLE_NAMES[entity_type]
    try:
        df = pd.read_sql_query(f"SELECT * FROM {table} ORDER BY rowid", conn)
    except (sqlite3.Error, pd.errors.DatabaseError) as e:
        raise LoaderError(f"Failed to read table {table}: {e}")

    return _frame_to_rows(df)


def load_sqlite(
    conn: sqlite3.Connection,
    check_references: bool = True
) -> RelationStore:
    """
    Build a store from the rides, food_orders, drivers and restaurants tables.

    Tables that do not exist leave their relation unloaded.

    Args:
        conn: SQLite connection to an already-populated database
        check_references: Verify driver and restaurant foreign keys

    Returns:
        Loaded RelationStore
    """
    tables = _existing_tables(conn)
    relations: Dict[str, Optional[List[Dict[str, Any]]]] = {}

    for entity_type, table in TABLE_NAMES.items():
        if table not in tables:
            logger.warning("No %s table, %s relation not loaded", table, entity_type)
            relations[entity_type] = None
            continue
        relations[entity_type] = normalize_rows(read_sqlite_relation(conn, entity_type), entity_type)

    return RelationStore.from_records(
        rides=relations['ride'],
        food_orders=relations['food_order'],
        drivers=relations['driver'],
        restaurants=relations['restaurant'],
        check_references=check_references
    )


def get_connection(db_path: Union[str, Path]) -> sqlite3.Connection:
    """
    Open an existing SQLite database read-only.

    Raises:
        LoaderError: If the file does not exist
    """
    db_path = Path(db_path)
    if not db_path.exists():
        raise LoaderError(f"Database not found: {db_path}")
    return sqlite3.connect(f"file:{db_path.resolve()}?mode=ro", uri=True)
