"""
Tests for CLI entry points - main() in-process plus one subprocess call.
Tests actual command execution against CSV files in a temp workspace.
"""

import json
import subprocess
import sys
from pathlib import Path

import pandas as pd
import pytest

import cli
from storage.loaders import TABLE_NAMES


PROJECT_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the CLI under test."""
    for var in ('ANALYTICS_DATA_DIR', 'ANALYTICS_DB_PATH', 'ANALYTICS_OUTPUT_DIR',
                'ANALYTICS_PERCENTILE', 'ANALYTICS_LOG_LEVEL', 'ANALYTICS_QUERY_CONFIG'):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def data_dir(tmp_path, rides, food_orders, drivers, restaurants):
    """Workspace with all four CSV files."""
    directory = tmp_path / 'raw'
    directory.mkdir()
    relations = {'ride': rides, 'food_order': food_orders, 'driver': drivers, 'restaurant': restaurants}
    for entity_type, rows in relations.items():
        pd.DataFrame(rows).to_csv(directory / f'{TABLE_NAMES[entity_type]}.csv', index=False)
    return directory


def run_main(argv):
    """Call cli.main and return its exit code."""
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


class TestRunCommand:
    """Tests for `cli.py run`."""

    def test_run_selected_queries(self, data_dir, tmp_path, capsys):
        output_path = tmp_path / 'results.json'

        code = run_main([
            'run', '--data-dir', str(data_dir), '--output', str(output_path),
            '--query', 'driver_efficiency', '--query', 'user_ride_spend_ranking',
        ])

        assert code == 0
        out = capsys.readouterr().out
        assert 'Loaded relations from' in out
        assert 'driver_efficiency' in out
        assert '2/2 queries completed' in out
        assert f'Results saved to: {output_path}' in out

        with open(output_path) as f:
            saved = json.load(f)
        assert [r['query'] for r in saved['results']] == ['driver_efficiency', 'user_ride_spend_ranking']
        spend = saved['results'][1]['rows']
        assert [(row['user_id'], row['rank']) for row in spend] == [(2, 1), (1, 2), (3, 3)]

    def test_run_all_queries_default_output(self, data_dir, tmp_path, monkeypatch, capsys):
        output_dir = tmp_path / 'processed'
        monkeypatch.setenv('ANALYTICS_OUTPUT_DIR', str(output_dir))

        code = run_main(['run', '--data-dir', str(data_dir)])

        assert code == 0
        written = list(output_dir.glob('results_*.json'))
        assert len(written) == 1
        assert '24/24 queries completed' in capsys.readouterr().out

    def test_cli_parameters_override_config(self, data_dir, tmp_path, capsys):
        output_path = tmp_path / 'results.json'

        code = run_main([
            'run', '--data-dir', str(data_dir), '--output', str(output_path),
            '--query', 'top_ride_spenders', '--percentile', '0', '--print',
        ])

        assert code == 0
        out = capsys.readouterr().out
        assert '"user_id": 2' in out
        assert '"user_id": 1' in out

        with open(output_path) as f:
            rows = json.load(f)['results'][0]['rows']
        assert [row['user_id'] for row in rows] == [2, 1]

    def test_failed_query_exit_code(self, data_dir, tmp_path, capsys):
        (data_dir / 'restaurants.csv').unlink()

        code = run_main([
            'run', '--data-dir', str(data_dir), '--output', str(tmp_path / 'r.json'),
            '--query', 'restaurant_revenue_ranking', '--query', 'driver_efficiency',
        ])

        assert code == 1
        out = capsys.readouterr().out
        assert 'FAILED' in out
        assert '1/2 queries completed' in out

    def test_missing_data_dir(self, tmp_path, capsys):
        code = run_main(['run', '--data-dir', str(tmp_path / 'nope')])

        assert code == 1
        assert 'Failed to load relations' in capsys.readouterr().err

    def test_unknown_query(self, data_dir, tmp_path, capsys):
        code = run_main([
            'run', '--data-dir', str(data_dir), '--output', str(tmp_path / 'r.json'), '--query', 'nope',
        ])

        assert code == 1
        assert 'Unknown queries' in capsys.readouterr().err

    def test_invalid_percentile(self, data_dir, capsys):
        code = run_main(['run', '--data-dir', str(data_dir), '--percentile', '2'])

        assert code == 1
        assert 'percentile' in capsys.readouterr().err

    def test_missing_database(self, tmp_path, capsys):
        code = run_main(['run', '--db-path', str(tmp_path / 'missing.db')])

        assert code == 1
        assert 'Database not found' in capsys.readouterr().err


class TestOtherCommands:
    """Tests for `cli.py list` and argument handling."""

    def test_list(self, capsys):
        code = run_main(['list'])

        assert code == 0
        out = capsys.readouterr().out
        assert 'combined_user_spend' in out
        assert 'driver_efficiency' in out

    def test_no_command(self, capsys):
        assert run_main([]) == 1

    def test_source_options_are_exclusive(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args(['run', '--data-dir', 'a', '--db-path', 'b'])
        assert exc_info.value.code == 2

    def test_list_subprocess(self):
        result = subprocess.run(
            [sys.executable, 'cli.py', 'list'],
            cwd=PROJECT_ROOT, capture_output=True, text=True, timeout=60
        )

        assert result.returncode == 0
        assert 'restaurant_order_status' in result.stdout
