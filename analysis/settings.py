"""
Engine configuration - environment variables plus optional YAML query parameters.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass
class EngineConfig:
    """Configuration for the analytics engine and its query catalog."""
    data_dir: Path = Path('./data/raw')
    db_path: Optional[Path] = None
    output_dir: Path = Path('./data/processed/queries')
    log_level: str = 'INFO'
    percentile: float = 0.8
    rolling_window: int = 7
    top_n: Optional[int] = 10
    query_params: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        """Validate and coerce."""
        self.data_dir = Path(self.data_dir)
        self.output_dir = Path(self.output_dir)
        if self.db_path is not None:
            self.db_path = Path(self.db_path)

        if isinstance(self.percentile, bool) or not isinstance(self.percentile, (int, float)) \
                or not 0 <= self.percentile <= 1:
            raise ConfigError(f"percentile must be in [0, 1], got {self.percentile!r}")

        if isinstance(self.rolling_window, bool) or not isinstance(self.rolling_window, int) \
                or self.rolling_window < 1:
            raise ConfigError(f"rolling_window must be a positive integer, got {self.rolling_window!r}")

        if self.top_n is not None and (isinstance(self.top_n, bool) or not isinstance(self.top_n, int)
                                       or self.top_n < 1):
            raise ConfigError(f"top_n must be a positive integer or null, got {self.top_n!r}")

        # getLevelName maps known names to their int level
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ConfigError(f"Unknown log level: {self.log_level!r}")
        self.log_level = str(self.log_level).upper()

        if not isinstance(self.query_params, dict):
            raise ConfigError("query_params must be a mapping of query name to parameters")

    def params_for(self, query_name: str) -> Dict[str, Any]:
        """Per-query overrides from the YAML file (empty if none)."""
        return dict(self.query_params.get(query_name) or {})


def load_query_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load query parameter configuration from a YAML file.

    Layout:
        defaults:
          percentile: 0.8
          rolling_window: 7
          top_n: 10
        queries:
          daily_ride_revenue:
            window: 30

    Args:
        config_path: Path to YAML file; defaults to ANALYTICS_QUERY_CONFIG

    Returns:
        Parsed configuration ({} when the default file does not exist)

    Raises:
        ConfigError: If an explicitly given file is missing or malformed
    """
    explicit = config_path is not None
    if config_path is None:
        config_path = os.getenv('ANALYTICS_QUERY_CONFIG', './config/queries.yml')

    config_file = Path(config_path)
    if not config_file.exists():
        if explicit:
            raise ConfigError(f"Query config file not found: {config_path}")
        logger.debug("No query config at %s, using defaults", config_path)
        return {}

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse query config {config_path}: {e}")

    if not isinstance(config, dict):
        raise ConfigError(f"Query config {config_path} must be a mapping")

    for section in ('defaults', 'queries'):
        if section in config and not isinstance(config[section] or {}, dict):
            raise ConfigError(f"Query config section {section!r} must be a mapping")

    return config


def load_config(config_path: Optional[str] = None, **overrides: Any) -> EngineConfig:
    """
    Build an EngineConfig from environment variables and the YAML file.

    Precedence: explicit overrides > environment > YAML defaults > built-in defaults.
    Overrides whose value is None are ignored.
    """
    yaml_config = load_query_config(config_path)
    defaults = yaml_config.get('defaults') or {}

    values: Dict[str, Any] = {
        'data_dir': os.getenv('ANALYTICS_DATA_DIR', './data/raw'),
        'db_path': os.getenv('ANALYTICS_DB_PATH') or None,
        'output_dir': os.getenv('ANALYTICS_OUTPUT_DIR', './data/processed/queries'),
        'log_level': os.getenv('ANALYTICS_LOG_LEVEL', 'INFO'),
        'percentile': defaults.get('percentile', 0.8),
        'rolling_window': defaults.get('rolling_window', 7),
        'top_n': defaults.get('top_n', 10),
        'query_params': yaml_config.get('queries') or {},
    }

    if os.getenv('ANALYTICS_PERCENTILE'):
        try:
            values['percentile'] = float(os.getenv('ANALYTICS_PERCENTILE'))
        except ValueError:
            raise ConfigError(f"ANALYTICS_PERCENTILE must be a number, got {os.getenv('ANALYTICS_PERCENTILE')!r}")

    values.update({key: value for key, value in overrides.items() if value is not None})

    return EngineConfig(**values)
