"""
Sentinel for results that have no defined value.
Zero-denominator ratios, empty-partition averages and the first row of a
lag window all yield UNDEFINED rather than raising or returning inf/NaN.
"""

from typing import Any


class UndefinedResult:
    """
    Singleton null marker for computed metrics.

    Falsy, equal only to itself, and serialised as JSON null by the job runner.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'UNDEFINED'

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (UndefinedResult, ())


UNDEFINED = UndefinedResult()


def is_undefined(value: Any) -> bool:
    """True for the UNDEFINED sentinel and for None."""
    return value is UNDEFINED or value is None
