"""
Analysis Engine Module

Reproduces the ride and food delivery report over an in-memory relation store:
- Filter/group/aggregate with conditional aggregates and safe ratios
- Window functions (competition/dense ranking, running and rolling sums, lag)
- Continuous percentile thresholds (top spenders)
- Time bucketing (hour, weekday, date, month, weekend)
"""

__version__ = "0.1.0"
