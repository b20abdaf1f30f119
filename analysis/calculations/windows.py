"""
Ordered-partition window utilities.
Pure functions for ranking, running/rolling aggregates and lag differences.

Every function partitions rows by a key, orders each partition, computes one
value per row and returns new row dicts in the original input order.
Ordering is stable and total: ties on the ordering field keep the order given
by tie_breaker (if any), then by original row position.
"""

from datetime import timedelta
from typing import Dict, Any, List, Optional, Iterable, Callable

import numpy as np

from analysis.calculations.grouping import Row, FieldSpec, GroupSpec, field_getter, partition_key
from analysis.calculations.undefined import UNDEFINED, is_undefined


RANK_METHODS = {'competition', 'dense', 'row_number'}

UNIT_SECONDS = {
    'seconds': 1.0,
    'minutes': 60.0,
    'hours': 3600.0,
    'days': 86400.0,
}


class WindowError(Exception):
    """Raised when a window function is specified incorrectly."""
    pass


def _sorted_positions(
    rows: List[Row],
    positions: List[int],
    order_by: Optional[FieldSpec],
    descending: bool = False,
    tie_breaker: Optional[FieldSpec] = None
) -> List[int]:
    """
    Order row positions by order_by; undefined values sort last.

    Python's sort is stable (also with reverse=True), so sorting by the
    tie breaker first and the main key second gives a total order that
    falls back to input position.
    """
    if order_by is None:
        return list(positions)

    getter = field_getter(order_by)
    defined = [i for i in positions if not is_undefined(getter(rows[i]))]
    undefined = [i for i in positions if is_undefined(getter(rows[i]))]

    if tie_breaker is not None:
        tie_getter = field_getter(tie_breaker)
        defined.sort(key=lambda i: tie_getter(rows[i]))
        undefined.sort(key=lambda i: tie_getter(rows[i]))

    defined.sort(key=lambda i: getter(rows[i]), reverse=descending)
    return defined + undefined


def ordered_partitions(
    rows: List[Row],
    partition_by: GroupSpec = None,
    order_by: Optional[FieldSpec] = None,
    descending: bool = False,
    tie_breaker: Optional[FieldSpec] = None
) -> Dict[tuple, List[int]]:
    """
    Split rows into partitions and order each one.

    Returns:
        Partition key -> row positions in window order. Partitions appear in
        order of first occurrence.
    """
    key = partition_key(partition_by)
    partitions: Dict[tuple, List[int]] = {}
    for position, row in enumerate(rows):
        partitions.setdefault(key(row), []).append(position)

    return {
        part: _sorted_positions(rows, positions, order_by, descending, tie_breaker)
        for part, positions in partitions.items()
    }


def _emit(rows: List[Row], output: str, values: Dict[int, Any]) -> List[Dict[str, Any]]:
    results = []
    for position, row in enumerate(rows):
        record = dict(row)
        record[output] = values[position]
        results.append(record)
    return results


def rank(
    rows: Iterable[Row],
    metric: FieldSpec,
    partition_by: GroupSpec = None,
    method: str = 'competition',
    descending: bool = True,
    tie_breaker: Optional[FieldSpec] = None,
    output: str = 'rank'
) -> List[Dict[str, Any]]:
    """
    Rank rows by a metric within each partition.

    Methods:
        competition: RANK() - ties share a rank, the next rank skips (1, 1, 3)
        dense: DENSE_RANK() - ties share a rank, no gaps (1, 1, 2)
        row_number: ROW_NUMBER() - ties broken by tie_breaker then position

    Args:
        rows: Input records
        metric: Field or extractor to rank by
        partition_by: Grouping spec; None ranks all rows together
        method: One of RANK_METHODS
        descending: Highest metric gets rank 1 when True
        tie_breaker: Secondary ordering for equal metrics
        output: Name of the rank column

    Returns:
        New row dicts, in input order, with the rank column added.
        Rows whose metric is undefined rank after all defined rows.
    """
    if method not in RANK_METHODS:
        raise WindowError(f"Unknown rank method {method!r}; expected one of {sorted(RANK_METHODS)}")

    rows = list(rows)
    getter = field_getter(metric)
    ranks: Dict[int, int] = {}

    for positions in ordered_partitions(rows, partition_by, metric, descending, tie_breaker).values():
        current_rank = 0
        previous = None
        for index, position in enumerate(positions):
            value = getter(rows[position])
            if method == 'row_number':
                current_rank = index + 1
            elif index == 0 or value != previous:
                current_rank = index + 1 if method == 'competition' else current_rank + 1
            ranks[position] = current_rank
            previous = value

    return _emit(rows, output, ranks)


def _frame_values(rows: List[Row], positions: List[int], getter: Callable[[Row], Any]) -> np.ndarray:
    values = []
    for position in positions:
        value = getter(rows[position])
        values.append(np.nan if is_undefined(value) else float(value))
    return np.array(values, dtype=float)


def _check_window(window: Optional[int]) -> None:
    if window is not None and (isinstance(window, bool) or not isinstance(window, int) or window < 1):
        raise WindowError(f"window must be a positive integer or None, got {window!r}")


def running_total(
    rows: Iterable[Row],
    value: FieldSpec,
    order_by: FieldSpec,
    partition_by: GroupSpec = None,
    window: Optional[int] = None,
    output: str = 'running_total'
) -> List[Dict[str, Any]]:
    """
    Cumulative or trailing-window sum within each partition.

    window=None sums from the start of the partition to the current row
    (ROWS UNBOUNDED PRECEDING). window=k sums the current row and the k-1
    rows before it (ROWS BETWEEN k-1 PRECEDING AND CURRENT ROW).

    Undefined values contribute nothing, as SQL SUM skips NULL.
    """
    _check_window(window)
    rows = list(rows)
    getter = field_getter(value)
    totals: Dict[int, Any] = {}

    for positions in ordered_partitions(rows, partition_by, order_by).values():
        values = np.nan_to_num(_frame_values(rows, positions, getter), nan=0.0)
        if window is None:
            sums = np.cumsum(values)
        else:
            sums = np.array([
                values[max(0, i - window + 1):i + 1].sum() for i in range(len(values))
            ])
        for position, total in zip(positions, sums):
            totals[position] = float(total)

    return _emit(rows, output, totals)


def moving_average(
    rows: Iterable[Row],
    value: FieldSpec,
    order_by: FieldSpec,
    partition_by: GroupSpec = None,
    window: Optional[int] = None,
    output: str = 'moving_average'
) -> List[Dict[str, Any]]:
    """
    Cumulative or trailing-window mean within each partition.

    Same frame as running_total. The mean is taken over defined values in
    the frame; a frame with none is UNDEFINED.
    """
    _check_window(window)
    rows = list(rows)
    getter = field_getter(value)
    averages: Dict[int, Any] = {}

    for positions in ordered_partitions(rows, partition_by, order_by).values():
        values = _frame_values(rows, positions, getter)
        for i, position in enumerate(positions):
            start = 0 if window is None else max(0, i - window + 1)
            frame = values[start:i + 1]
            frame = frame[~np.isnan(frame)]
            averages[position] = float(frame.mean()) if len(frame) else UNDEFINED

    return _emit(rows, output, averages)


def lag(
    rows: Iterable[Row],
    field: FieldSpec,
    partition_by: GroupSpec = None,
    order_by: Optional[FieldSpec] = None,
    offset: int = 1,
    output: str = 'previous'
) -> List[Dict[str, Any]]:
    """
    Value of field from the row offset places earlier in the partition.

    Rows without such a predecessor get UNDEFINED. order_by defaults to field.
    """
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 1:
        raise WindowError(f"offset must be a positive integer, got {offset!r}")

    rows = list(rows)
    getter = field_getter(field)
    order_by = field if order_by is None else order_by
    previous: Dict[int, Any] = {}

    for positions in ordered_partitions(rows, partition_by, order_by).values():
        for i, position in enumerate(positions):
            previous[position] = getter(rows[positions[i - offset]]) if i >= offset else UNDEFINED

    return _emit(rows, output, previous)


def lag_difference(
    rows: Iterable[Row],
    field: FieldSpec,
    partition_by: GroupSpec = None,
    order_by: Optional[FieldSpec] = None,
    unit: Optional[str] = None,
    output: str = 'difference'
) -> List[Dict[str, Any]]:
    """
    Difference between each row's field and its predecessor's in the partition.

    The first row of every partition has no predecessor and gets UNDEFINED.
    Datetime fields produce timedelta, or a float count of unit
    ('seconds', 'minutes', 'hours', 'days') when unit is given.

    Example:
        Orders at 10:00 and 10:15 for one user with unit='minutes'
        -> UNDEFINED for the first, 15.0 for the second.
    """
    if unit is not None and unit not in UNIT_SECONDS:
        raise WindowError(f"Unknown unit {unit!r}; expected one of {sorted(UNIT_SECONDS)}")

    getter = field_getter(field)
    lagged = lag(rows, field, partition_by, order_by, output='__previous')

    results = []
    for record in lagged:
        previous = record.pop('__previous')
        current = getter(record)
        if is_undefined(previous) or is_undefined(current):
            difference = UNDEFINED
        else:
            difference = current - previous
            if isinstance(difference, timedelta) and unit is not None:
                difference = difference.total_seconds() / UNIT_SECONDS[unit]
        record[output] = difference
        results.append(record)

    return results


def order_rows(
    rows: Iterable[Row],
    key: FieldSpec,
    descending: bool = False,
    limit: Optional[int] = None,
    tie_breaker: Optional[FieldSpec] = None
) -> List[Dict[str, Any]]:
    """
    Stable ORDER BY ... [LIMIT n]; undefined keys sort last.

    Returns:
        New row dicts in sorted order, truncated to limit when given
    """
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
        raise WindowError(f"limit must be a non-negative integer, got {limit!r}")

    rows = list(rows)
    positions = _sorted_positions(rows, list(range(len(rows))), key, descending, tie_breaker)
    if limit is not None:
        positions = positions[:limit]
    return [dict(rows[position]) for position in positions]
