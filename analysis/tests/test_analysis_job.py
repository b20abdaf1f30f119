"""
Tests for orchestrated analysis job - RelationStore to results JSON.
Uses the shared fixture store; output file is read back and checked.
"""

import json
from datetime import date, datetime, timedelta

import numpy as np
import pytest

from analysis.analysis_job import (
    run_queries,
    run_single_query,
    to_jsonable,
    AnalysisJobError,
    QueryStatus,
)
from analysis.calculations.undefined import UNDEFINED
from analysis.queries import QUERY_CATALOG, UnknownQueryError
from analysis.settings import EngineConfig
from storage.relation_store import RelationStore


class TestRunQueries:
    """Tests for run_queries."""

    def test_runs_whole_catalog(self, sample_store):
        summary = run_queries(sample_store)

        assert summary['total_queries'] == len(QUERY_CATALOG)
        assert summary['completed'] == len(QUERY_CATALOG)
        assert summary['failed'] == 0
        assert summary['success_rate'] == 1.0
        assert summary['output_path'] is None
        assert [r['query'] for r in summary['results']] == list(QUERY_CATALOG)
        assert summary['relation_counts'] == {
            'ride': 6, 'food_order': 6, 'driver': 3, 'restaurant': 3,
        }

    def test_writes_json(self, sample_store, tmp_path):
        output_path = tmp_path / 'out' / 'results.json'

        summary = run_queries(sample_store, ['driver_efficiency', 'daily_food_revenue'], output_path)

        assert output_path.exists()
        assert summary['output_path'] == str(output_path)

        with open(output_path) as f:
            saved = json.load(f)

        efficiency = saved['results'][0]['rows']
        assert [row['efficiency_ratio'] for row in efficiency] == [2.0, 1.0, None]

        daily = saved['results'][1]['rows']
        assert daily[0]['order_date'] == '2024-01-06'
        assert daily[-1]['cumulative_revenue'] == 140.0

    def test_failed_query_does_not_stop_others(self, rides, food_orders):
        """Without restaurants loaded, the restaurant join fails but ride queries still run."""
        store = RelationStore.from_records(rides=rides, food_orders=food_orders)

        summary = run_queries(store, ['restaurant_revenue_ranking', 'user_ride_spend_ranking'])

        failed, completed = summary['results']
        assert failed['status'] == QueryStatus.FAILED.value
        assert failed['error_type'] == 'NotFoundError'
        assert 'restaurant' in failed['error_message']
        assert failed['rows'] == []
        assert completed['status'] == QueryStatus.COMPLETED.value
        assert completed['row_count'] == 3
        assert summary['completed'] == 1
        assert summary['failed'] == 1
        assert summary['success_rate'] == 0.5

    def test_unknown_query_name(self, sample_store):
        with pytest.raises(AnalysisJobError, match="nope"):
            run_queries(sample_store, ['driver_efficiency', 'nope'])

    def test_empty_name_list(self, sample_store):
        summary = run_queries(sample_store, [])
        assert summary['total_queries'] == 0
        assert summary['success_rate'] == 0

    def test_config_parameters_applied(self, sample_store):
        config = EngineConfig(top_n=1)

        summary = run_queries(sample_store, ['restaurant_revenue_ranking'], config=config)

        rows = summary['results'][0]['rows']
        assert [row['restaurant_id'] for row in rows] == [12]


class TestRunSingleQuery:
    """Tests for run_single_query."""

    def test_completed(self, sample_store):
        result = run_single_query(sample_store, 'orders_by_hour')

        assert result['status'] == 'completed'
        assert result['row_count'] == 3
        assert result['error_type'] is None
        assert result['duration_seconds'] >= 0

    def test_bad_parameter_reported_as_failure(self, sample_store):
        result = run_single_query(sample_store, 'daily_ride_revenue', params={'window': 0})

        assert result['status'] == 'failed'
        assert result['error_type'] == 'WindowError'

    def test_unknown_query_propagates(self, sample_store):
        with pytest.raises(UnknownQueryError):
            run_single_query(sample_store, 'nope')


class TestToJsonable:
    """Tests for to_jsonable."""

    def test_undefined_is_null(self):
        assert to_jsonable({'ratio': UNDEFINED}) == {'ratio': None}

    def test_dates_and_durations(self):
        value = {
            'day': date(2024, 1, 6),
            'at': datetime(2024, 1, 6, 10, 15),
            'gap': timedelta(minutes=15),
        }

        assert to_jsonable(value) == {
            'day': '2024-01-06',
            'at': '2024-01-06T10:15:00',
            'gap': 900.0,
        }

    def test_numpy_scalars_and_tuples(self):
        assert to_jsonable((np.float64(1.5), np.int64(3))) == [1.5, 3]
        assert isinstance(to_jsonable(np.int64(3)), int)

    def test_plain_values_untouched(self):
        assert to_jsonable(['a', 1, 2.5, None, True]) == ['a', 1, 2.5, None, True]
