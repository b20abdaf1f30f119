#!/usr/bin/env python3
"""
Main CLI for the ride and food delivery analytics engine.
Usage: python cli.py run [--data-dir DIR | --db-path FILE] [--query NAME ...]
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from pathlib import Path
from typing import List, Optional

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from analysis.analysis_job import run_queries, to_jsonable, AnalysisJobError
from analysis.queries import list_queries
from analysis.settings import load_config, ConfigError
from ingestion.transforms.validators import ValidationError
from storage.loaders import load_csv_directory, load_sqlite, get_connection, LoaderError
from storage.relation_store import NotFoundError


logger = logging.getLogger('cli')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Run ride and food delivery analytics queries',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py list
  python cli.py run --data-dir ./data/raw
  python cli.py run --db-path ./data/delivery.db --query driver_efficiency
  python cli.py run --query top_ride_spenders --percentile 0.9 --print
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument('--config', help='Query parameter YAML file (default: $ANALYTICS_QUERY_CONFIG)')

    subparsers = parser.add_subparsers(dest='command')

    subparsers.add_parser('list', help='List available queries')

    run_parser = subparsers.add_parser('run', help='Run queries and write results JSON')
    source = run_parser.add_mutually_exclusive_group()
    source.add_argument('--data-dir', help='Directory with rides.csv, food_orders.csv, drivers.csv, restaurants.csv')
    source.add_argument('--db-path', help='Existing SQLite database with the four tables')
    run_parser.add_argument('--query', '-q', action='append', dest='queries',
                            help='Query to run (repeatable, default: all)')
    run_parser.add_argument('--output', '-o', help='Output JSON path (default: $ANALYTICS_OUTPUT_DIR/results_<timestamp>.json)')
    run_parser.add_argument('--percentile', type=float, help='Percentile for top-spender queries (0-1)')
    run_parser.add_argument('--window', type=int, help='Trailing window size for rolling queries')
    run_parser.add_argument('--top-n', type=int, help='Rank cutoff for ranking queries')
    run_parser.add_argument('--print', action='store_true', dest='print_rows',
                            help='Print result rows to stdout')

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(
            args.config,
            percentile=getattr(args, 'percentile', None),
            rolling_window=getattr(args, 'window', None),
            top_n=getattr(args, 'top_n', None),
            data_dir=getattr(args, 'data_dir', None),
            db_path=getattr(args, 'db_path', None),
        )
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    if args.command == 'list':
        for name, summary in list_queries().items():
            print(f"{name:30} {summary}")
        sys.exit(0)

    run(args, config)


def run(args, config):
    """Load relations, run queries, report."""
    # An explicit --data-dir wins over ANALYTICS_DB_PATH
    use_db = args.db_path is not None or (args.data_dir is None and config.db_path is not None)

    try:
        if use_db:
            conn = get_connection(config.db_path)
            try:
                store = load_sqlite(conn)
            finally:
                conn.close()
            source = config.db_path
        else:
            store = load_csv_directory(config.data_dir)
            source = config.data_dir
    except (LoaderError, ValidationError, NotFoundError) as e:
        print(f"ERROR: Failed to load relations: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Loaded relations from {source}: {store.counts()}")

    if args.output:
        output_path = Path(args.output)
    else:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        output_path = config.output_dir / f'results_{timestamp}.json'

    try:
        summary = run_queries(store, args.queries, output_path=output_path, config=config)
    except AnalysisJobError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    for result in summary['results']:
        if result['status'] == 'completed':
            print(f"  {result['query']:30} {result['row_count']} rows")
            if args.print_rows:
                for row in result['rows']:
                    print(f"    {json.dumps(to_jsonable(row))}")
        else:
            print(f"  {result['query']:30} FAILED: {result['error_message']}")

    print(f"{summary['completed']}/{summary['total_queries']} queries completed")
    print(f"Results saved to: {summary['output_path']}")

    sys.exit(0 if summary['failed'] == 0 else 1)


if __name__ == '__main__':
    main()
