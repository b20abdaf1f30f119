"""
Filter/group/aggregate utilities.
Pure functions - one pass over the rows, one output record per group.
"""

from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Callable, Iterable, Mapping, Sequence, Union

from analysis.calculations.undefined import UNDEFINED, is_undefined


Row = Mapping[str, Any]
Predicate = Callable[[Row], bool]
FieldSpec = Union[str, Callable[[Row], Any]]
GroupSpec = Union[None, str, Sequence[str], Mapping[str, FieldSpec]]

AGGREGATE_FUNCS = {'count', 'sum', 'avg', 'min', 'max', 'count_distinct'}


class GroupingError(Exception):
    """Raised when a grouping or aggregate is specified incorrectly."""
    pass


@dataclass(frozen=True)
class Aggregate:
    """
    One aggregate column.

    Attributes:
        func: One of count, sum, avg, min, max, count_distinct
        field: Field name or extractor; optional for count
        where: Per-aggregate predicate, like SUM(CASE WHEN ... END)
    """
    func: str
    field: Optional[FieldSpec] = None
    where: Optional[Predicate] = None

    def __post_init__(self):
        if self.func not in AGGREGATE_FUNCS:
            raise GroupingError(
                f"Unknown aggregate {self.func!r}; expected one of {sorted(AGGREGATE_FUNCS)}"
            )
        if self.func != 'count' and self.field is None:
            raise GroupingError(f"Aggregate {self.func!r} requires a field")


def count(where: Optional[Predicate] = None) -> Aggregate:
    return Aggregate('count', where=where)


def sum_of(field: FieldSpec, where: Optional[Predicate] = None) -> Aggregate:
    return Aggregate('sum', field, where)


def avg_of(field: FieldSpec, where: Optional[Predicate] = None) -> Aggregate:
    return Aggregate('avg', field, where)


def min_of(field: FieldSpec, where: Optional[Predicate] = None) -> Aggregate:
    return Aggregate('min', field, where)


def max_of(field: FieldSpec, where: Optional[Predicate] = None) -> Aggregate:
    return Aggregate('max', field, where)


def count_distinct(field: FieldSpec, where: Optional[Predicate] = None) -> Aggregate:
    return Aggregate('count_distinct', field, where)


def field_getter(spec: FieldSpec) -> Callable[[Row], Any]:
    """Turn a field name or callable into an extractor."""
    if callable(spec):
        return spec
    if isinstance(spec, str):
        return lambda row: row[spec]
    raise GroupingError(f"Field spec must be a name or callable, got {type(spec).__name__}")


def key_columns(by: GroupSpec) -> Dict[str, Callable[[Row], Any]]:
    """
    Normalize a grouping spec into an ordered {output name: extractor} map.

    None -> no key columns (single global group)
    'user_id' -> {'user_id': row['user_id']}
    ('restaurant_id', 'day_type') -> one column per field
    {'hour': callable} -> named computed columns
    """
    if by is None:
        return {}
    if isinstance(by, str):
        return {by: field_getter(by)}
    if isinstance(by, Mapping):
        return {name: field_getter(spec) for name, spec in by.items()}
    if isinstance(by, Sequence):
        return {name: field_getter(name) for name in by}
    raise GroupingError(f"Unsupported grouping spec: {by!r}")


def partition_key(by: GroupSpec) -> Callable[[Row], tuple]:
    """Extractor returning the composite key tuple for a grouping spec."""
    columns = list(key_columns(by).values())
    return lambda row: tuple(getter(row) for getter in columns)


def filter_rows(rows: Iterable[Row], where: Optional[Predicate] = None) -> List[Row]:
    """Keep rows matching a predicate (all rows when where is None)."""
    if where is None:
        return list(rows)
    return [row for row in rows if where(row)]


def field_equals(field: str, value: Any) -> Predicate:
    """Predicate for row[field] == value."""
    return lambda row: row[field] == value


def group_aggregate(
    rows: Iterable[Row],
    by: GroupSpec,
    aggregates: Mapping[str, Aggregate],
    where: Optional[Predicate] = None
) -> List[Dict[str, Any]]:
    """
    Group rows and compute several aggregates per group in a single pass.

    Args:
        rows: Input records
        by: Grouping spec (see key_columns)
        aggregates: Output column name -> Aggregate
        where: Row filter applied before grouping

    Returns:
        One dict per group with key columns followed by aggregate columns.
        Groups appear in order of first occurrence of their key.

    Example:
        group_aggregate(rides, 'driver_id', {
            'completed': count(field_equals('ride_status', 'Completed')),
            'canceled': count(field_equals('ride_status', 'Canceled')),
        })
    """
    if not aggregates:
        raise GroupingError("At least one aggregate is required")

    columns = key_columns(by)
    overlap = set(columns) & set(aggregates)
    if overlap:
        raise GroupingError(f"Aggregate names collide with key columns: {sorted(overlap)}")

    getters = {name: field_getter(agg.field) for name, agg in aggregates.items()
               if agg.field is not None}

    groups: Dict[tuple, Dict[str, Any]] = {}
    states: Dict[tuple, Dict[str, Any]] = {}

    for row in rows:
        if where is not None and not where(row):
            continue

        key = tuple(getter(row) for getter in columns.values())
        if key not in groups:
            groups[key] = dict(zip(columns.keys(), key))
            states[key] = {name: _initial_state(agg) for name, agg in aggregates.items()}

        state = states[key]
        for name, agg in aggregates.items():
            if agg.where is not None and not agg.where(row):
                continue
            value = getters[name](row) if name in getters else None
            state[name] = _accumulate(agg.func, state[name], value)

    # A global aggregate over no rows still yields one record, as SQL does
    if not columns and not groups:
        groups[()] = {}
        states[()] = {name: _initial_state(agg) for name, agg in aggregates.items()}

    results = []
    for key, record in groups.items():
        for name, agg in aggregates.items():
            record[name] = _finalize(agg.func, states[key][name])
        results.append(record)

    return results


def _initial_state(agg: Aggregate) -> Any:
    if agg.func == 'count':
        return 0
    if agg.func == 'sum':
        return 0
    if agg.func == 'avg':
        return [0, 0]
    if agg.func == 'count_distinct':
        return set()
    return UNDEFINED


def _accumulate(func: str, state: Any, value: Any) -> Any:
    if func == 'count':
        return state + 1

    # NULL-like values are skipped, as SQL aggregates skip NULL
    if is_undefined(value):
        return state

    if func == 'sum':
        return state + value
    if func == 'avg':
        state[0] += value
        state[1] += 1
        return state
    if func == 'min':
        return value if state is UNDEFINED or value < state else state
    if func == 'max':
        return value if state is UNDEFINED or value > state else state
    if func == 'count_distinct':
        state.add(value)
        return state
    raise GroupingError(f"Unknown aggregate {func!r}")


def _finalize(func: str, state: Any) -> Any:
    if func == 'avg':
        total, n = state
        return total / n if n else UNDEFINED
    if func == 'count_distinct':
        return len(state)
    return state


def safe_ratio(numerator: Any, denominator: Any, scale: float = 1.0) -> Any:
    """
    Divide, yielding UNDEFINED instead of failing on a zero denominator.

    Args:
        numerator: Dividend (UNDEFINED/None propagates)
        denominator: Divisor (0, UNDEFINED or None yields UNDEFINED)
        scale: Multiplier applied to the quotient, e.g. 100 for a percentage

    Returns:
        numerator / denominator * scale, or UNDEFINED
    """
    if is_undefined(numerator) or is_undefined(denominator):
        return UNDEFINED
    if denominator == 0:
        return UNDEFINED
    return numerator / denominator * scale


def with_ratio(
    rows: Iterable[Row],
    output: str,
    numerator: str,
    denominator: str,
    scale: float = 1.0,
    digits: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Add a ratio column numerator/denominator to each row.

    Args:
        rows: Input records
        output: Name of the new column
        numerator: Field holding the numerator
        denominator: Field holding the denominator
        scale: Multiplier for the quotient (100 for percentages)
        digits: Round to this many decimals when the ratio is defined

    Returns:
        New row dicts with the ratio column appended
    """
    results = []
    for row in rows:
        value = safe_ratio(row[numerator], row[denominator], scale)
        if digits is not None and value is not UNDEFINED:
            value = round(value, digits)
        record = dict(row)
        record[output] = value
        results.append(record)
    return results


def derive(rows: Iterable[Row], **columns: Callable[[Row], Any]) -> List[Dict[str, Any]]:
    """
    Add computed columns to each row.

    Columns are evaluated in keyword order, and each sees the ones before it.
    """
    results = []
    for row in rows:
        record = dict(row)
        for name, func in columns.items():
            record[name] = func(record)
        results.append(record)
    return results
