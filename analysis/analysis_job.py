"""
Orchestrated query job - RelationStore to results JSON.
Runs catalog queries, records per-query status, persists one JSON document.
"""

import json
import logging
from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional, List

from analysis.calculations.undefined import UndefinedResult
from analysis.queries import QUERY_CATALOG, UnknownQueryError, run_query
from analysis.settings import EngineConfig
from storage.relation_store import RelationStore


logger = logging.getLogger(__name__)


class QueryStatus(str, Enum):
    """Enumeration of query run statuses."""
    COMPLETED = 'completed'
    FAILED = 'failed'


class AnalysisJobError(Exception):
    """Raised when the job itself cannot run."""
    pass


def to_jsonable(value: Any) -> Any:
    """
    Convert result values to JSON-compatible types.

    UNDEFINED -> None, datetime/date -> ISO-8601, timedelta -> seconds.
    """
    if isinstance(value, UndefinedResult):
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if hasattr(value, 'item'):
        # numpy scalar
        return value.item()
    return value


def run_single_query(
    store: RelationStore,
    name: str,
    config: Optional[EngineConfig] = None,
    params: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Run one query and capture its outcome.

    Returns:
        Dictionary with name, status, row count, rows (or error) and duration
    """
    start_time = datetime.now()
    try:
        rows = run_query(store, name, config, **(params or {}))
    except UnknownQueryError:
        raise
    except Exception as e:
        logger.error("Query %s failed: %s", name, e)
        return {
            'query': name,
            'status': QueryStatus.FAILED.value,
            'error_type': type(e).__name__,
            'error_message': str(e),
            'row_count': 0,
            'rows': [],
            'duration_seconds': (datetime.now() - start_time).total_seconds()
        }

    logger.info("Query %s completed with %d rows", name, len(rows))
    return {
        'query': name,
        'status': QueryStatus.COMPLETED.value,
        'error_type': None,
        'error_message': None,
        'row_count': len(rows),
        'rows': rows,
        'duration_seconds': (datetime.now() - start_time).total_seconds()
    }


def run_queries(
    store: RelationStore,
    names: Optional[List[str]] = None,
    output_path: Optional[Path] = None,
    config: Optional[EngineConfig] = None
) -> Dict[str, Any]:
    """
    Run several catalog queries against one store and optionally save results.

    A failing query is reported with status 'failed' and does not stop the
    others.

    Args:
        store: Loaded relation store
        names: Query names (default: the whole catalog, in catalog order)
        output_path: JSON file to write; nothing is written when None
        config: Engine configuration for query parameters

    Returns:
        Summary with per-query results

    Raises:
        AnalysisJobError: If a name is not in the catalog
    """
    if names is None:
        names = list(QUERY_CATALOG)

    unknown = [name for name in names if name not in QUERY_CATALOG]
    if unknown:
        raise AnalysisJobError(f"Unknown queries: {unknown}")

    start_time = datetime.now()
    logger.info("Running %d queries over %s", len(names), store.counts())

    results = [run_single_query(store, name, config) for name in names]

    completed = [r for r in results if r['status'] == QueryStatus.COMPLETED.value]
    failed = [r for r in results if r['status'] == QueryStatus.FAILED.value]

    summary = {
        'generated_at': start_time.isoformat(),
        'relation_counts': store.counts(),
        'total_queries': len(names),
        'completed': len(completed),
        'failed': len(failed),
        'success_rate': len(completed) / len(names) if names else 0,
        'duration_seconds': (datetime.now() - start_time).total_seconds(),
        'output_path': None,
        'results': results
    }

    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        summary['output_path'] = str(output_path)
        with open(output_path, 'w') as f:
            json.dump(to_jsonable(summary), f, indent=2)
        logger.info("Wrote results to %s", output_path)

    if failed:
        logger.warning("%d of %d queries failed", len(failed), len(names))

    return summary
