"""
Tests for engine configuration loading.
"""

from pathlib import Path

import pytest

from analysis.settings import EngineConfig, ConfigError, load_config, load_query_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in ('ANALYTICS_DATA_DIR', 'ANALYTICS_DB_PATH', 'ANALYTICS_OUTPUT_DIR',
                'ANALYTICS_PERCENTILE', 'ANALYTICS_LOG_LEVEL'):
        monkeypatch.delenv(var, raising=False)
    # Point the default lookup at a file that does not exist
    monkeypatch.setenv('ANALYTICS_QUERY_CONFIG', str(tmp_path / 'absent.yml'))


def write_yaml(path: Path, text: str) -> Path:
    path.write_text(text, encoding='utf-8')
    return path


class TestEngineConfig:
    """Tests for EngineConfig validation."""

    def test_defaults(self):
        config = EngineConfig()

        assert config.percentile == 0.8
        assert config.rolling_window == 7
        assert config.top_n == 10
        assert config.db_path is None
        assert isinstance(config.data_dir, Path)

    def test_coerces_paths_and_level(self):
        config = EngineConfig(data_dir='raw', db_path='x.db', log_level='debug')

        assert config.data_dir == Path('raw')
        assert config.db_path == Path('x.db')
        assert config.log_level == 'DEBUG'

    @pytest.mark.parametrize('kwargs', [
        {'percentile': 1.5},
        {'percentile': -0.1},
        {'percentile': True},
        {'rolling_window': 0},
        {'rolling_window': 2.5},
        {'top_n': 0},
        {'log_level': 'LOUD'},
        {'query_params': ['not', 'a', 'mapping']},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            EngineConfig(**kwargs)

    def test_top_n_may_be_none(self):
        assert EngineConfig(top_n=None).top_n is None

    def test_params_for(self):
        config = EngineConfig(query_params={'user_ride_gaps': {'unit': 'days'}})

        assert config.params_for('user_ride_gaps') == {'unit': 'days'}
        assert config.params_for('driver_efficiency') == {}


class TestLoadQueryConfig:
    """Tests for load_query_config."""

    def test_missing_default_file(self):
        assert load_query_config() == {}

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_query_config(str(tmp_path / 'nope.yml'))

    def test_parses_sections(self, tmp_path):
        path = write_yaml(tmp_path / 'q.yml', """
defaults:
  percentile: 0.9
queries:
  daily_ride_revenue:
    window: 30
""")

        config = load_query_config(str(path))

        assert config['defaults'] == {'percentile': 0.9}
        assert config['queries']['daily_ride_revenue'] == {'window': 30}

    def test_empty_file(self, tmp_path):
        assert load_query_config(str(write_yaml(tmp_path / 'q.yml', ''))) == {}

    def test_malformed_yaml(self, tmp_path):
        path = write_yaml(tmp_path / 'q.yml', 'defaults: [unclosed')
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_query_config(str(path))

    def test_bad_section(self, tmp_path):
        path = write_yaml(tmp_path / 'q.yml', 'queries: [1, 2]')
        with pytest.raises(ConfigError, match="queries"):
            load_query_config(str(path))

    def test_top_level_not_mapping(self, tmp_path):
        path = write_yaml(tmp_path / 'q.yml', '- a\n- b\n')
        with pytest.raises(ConfigError, match="mapping"):
            load_query_config(str(path))


class TestLoadConfig:
    """Tests for load_config precedence."""

    def test_builtin_defaults(self):
        config = load_config()

        assert config.percentile == 0.8
        assert config.query_params == {}

    def test_yaml_defaults(self, tmp_path):
        path = write_yaml(tmp_path / 'q.yml', """
defaults:
  percentile: 0.9
  rolling_window: 3
  top_n: null
queries:
  user_ride_gaps:
    unit: days
""")

        config = load_config(str(path))

        assert config.percentile == 0.9
        assert config.rolling_window == 3
        assert config.top_n is None
        assert config.params_for('user_ride_gaps') == {'unit': 'days'}

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv('ANALYTICS_DATA_DIR', str(tmp_path / 'raw'))
        monkeypatch.setenv('ANALYTICS_DB_PATH', str(tmp_path / 'a.db'))
        monkeypatch.setenv('ANALYTICS_LOG_LEVEL', 'warning')
        monkeypatch.setenv('ANALYTICS_PERCENTILE', '0.5')

        config = load_config()

        assert config.data_dir == tmp_path / 'raw'
        assert config.db_path == tmp_path / 'a.db'
        assert config.log_level == 'WARNING'
        assert config.percentile == 0.5

    def test_environment_beats_yaml(self, monkeypatch, tmp_path):
        path = write_yaml(tmp_path / 'q.yml', 'defaults:\n  percentile: 0.9\n')
        monkeypatch.setenv('ANALYTICS_PERCENTILE', '0.7')

        assert load_config(str(path)).percentile == 0.7

    def test_overrides_win_and_none_ignored(self, monkeypatch):
        monkeypatch.setenv('ANALYTICS_PERCENTILE', '0.7')

        config = load_config(percentile=0.95, rolling_window=None)

        assert config.percentile == 0.95
        assert config.rolling_window == 7

    def test_bad_percentile_env(self, monkeypatch):
        monkeypatch.setenv('ANALYTICS_PERCENTILE', 'high')
        with pytest.raises(ConfigError, match="ANALYTICS_PERCENTILE"):
            load_config()

    def test_invalid_override(self):
        with pytest.raises(ConfigError):
            load_config(rolling_window=0)
