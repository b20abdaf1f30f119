"""
Percentile threshold utilities.
Pure functions for continuous (interpolated) percentiles.
"""

import math
from typing import Dict, Any, List, Iterable, Tuple, Union

import numpy as np

from analysis.calculations.grouping import Row, FieldSpec, field_getter
from analysis.calculations.undefined import UNDEFINED, UndefinedResult, is_undefined


class PercentileError(Exception):
    """Raised when percentile calculation fails."""
    pass


def percentile_cont(values: Iterable[float], p: float) -> Union[float, UndefinedResult]:
    """
    Continuous percentile with linear interpolation (PERCENTILE_CONT).

    Sort the values, locate fractional rank p * (n - 1), and interpolate
    between the two order statistics around it.

    Args:
        values: Numeric values in any order
        p: Percentile as a fraction in [0, 1] (0.8 = 80th percentile)

    Returns:
        Interpolated percentile, or UNDEFINED for empty input

    Raises:
        PercentileError: If p is out of range or values are not finite

    Example:
        percentile_cont([10, 20, 30, 40, 50], 0.8) -> 42.0
        (rank 3.2 between 40 and 50)
    """
    if isinstance(p, bool) or not isinstance(p, (int, float)) or not 0 <= p <= 1:
        raise PercentileError(f"p must be in [0, 1], got {p!r}")

    data = [float(v) for v in values if not is_undefined(v)]
    if not data:
        return UNDEFINED

    if any(not math.isfinite(v) for v in data):
        raise PercentileError("Non-finite values not allowed")

    # numpy's 'linear' method is the p * (n - 1) definition
    return float(np.quantile(np.array(data), p, method='linear'))


def above_percentile(
    rows: Iterable[Row],
    field: FieldSpec,
    p: float = 0.8
) -> Tuple[Union[float, UndefinedResult], List[Dict[str, Any]]]:
    """
    Rows whose field is strictly greater than the p-th percentile of field.

    Args:
        rows: Input records, typically one per entity with an aggregate
        field: Field or extractor holding the metric
        p: Percentile as a fraction, 0.8 for "top 20%"

    Returns:
        Tuple of (threshold, matching rows in input order). An empty input
        gives (UNDEFINED, []).
    """
    rows = list(rows)
    getter = field_getter(field)
    threshold = percentile_cont([getter(row) for row in rows], p)

    if threshold is UNDEFINED:
        return UNDEFINED, []

    selected = [
        dict(row) for row in rows
        if not is_undefined(getter(row)) and getter(row) > threshold
    ]
    return threshold, selected
