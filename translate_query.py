#!/usr/bin/env python3
"""
CLI entry point for batch translation of time series queries.

Loads query definitions from a JSON or YAML file and prints the native
query each configured backend would run.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from tsdb_query import (
    AppConfig,
    QueryError,
    TagResolutionError,
    TimeSeriesDriver,
    TSDBError,
    create_default_registry,
    load_config,
    setup_logging,
)
from tsdb_query.api import translate_definition


def load_queries(query_file: str) -> Dict[str, Dict[str, Any]]:
    """Load query definitions from a JSON or YAML file.

    The file holds one query mapping, a list of query mappings, or a
    mapping of query names to query mappings:

    {
        "cpu_by_host": {"measurement": "cpu_usage", "group_by": ["host"], ...},
        "disk_free": {"measurement": "disk", ...},
        ...
    }

    Args:
        query_file: Path to the query file

    Returns:
        Dictionary mapping query names to query definitions

    Raises:
        ValueError: If file format is invalid
    """
    path = Path(query_file)

    if not path.exists():
        raise ValueError(f"Query file not found: {query_file}")

    content = path.read_text().strip()
    if not content:
        return {}

    try:
        if path.suffix == '.json':
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in query file: {e}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in query file: {e}")

    if isinstance(data, list):
        queries = {f"query_{i}": query for i, query in enumerate(data, 1)}
    elif isinstance(data, dict) and 'measurement' in data:
        queries = {"query": data}
    elif isinstance(data, dict):
        queries = dict(data)
    else:
        raise ValueError("Query file must contain a query, a list of queries or a mapping of named queries")

    for name, query in queries.items():
        if not isinstance(query, dict):
            raise ValueError(f"Query '{name}': Definition must be a mapping")

    return queries


def create_drivers(config: AppConfig, backends: Optional[List[str]] = None) -> Dict[str, TimeSeriesDriver]:
    """Create one driver per requested backend.

    Args:
        config: Application configuration
        backends: Backend names (all configured backends if omitted)

    Returns:
        Dictionary mapping backend names to drivers

    Raises:
        DriverError: If a backend is unknown
    """
    registry = create_default_registry()
    names = backends or config.backend_names()
    return {name: registry.create(name, config.drivers.get(name)) for name in names}


def translate_queries(
    queries: Dict[str, Dict[str, Any]],
    drivers: Dict[str, TimeSeriesDriver],
    verbose: bool = False,
) -> Dict[str, Dict[str, Any]]:
    """Translate every query for every backend.

    A query that a backend cannot translate is reported in place; it does
    not stop the other translations.

    Args:
        queries: Query definitions by name
        drivers: Drivers by backend name
        verbose: Whether to print verbose output

    Returns:
        Results keyed by query name, then backend name
    """
    results: Dict[str, Dict[str, Any]] = {}

    for query_name, definition in queries.items():
        if verbose:
            print(f"Translating query: {query_name}", file=sys.stderr)

        results[query_name] = {}
        for backend, driver in drivers.items():
            try:
                results[query_name][backend] = {
                    "status": "success",
                    **translate_definition(driver, definition),
                }
            except (QueryError, TagResolutionError) as e:
                results[query_name][backend] = {
                    "status": "error",
                    "error": str(e),
                }

    return results


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="TSDB Query - Translate queries for InfluxDB, Prometheus, Graphite and RRDtool"
    )

    parser.add_argument(
        "queries",
        help="Path to query file (JSON or YAML)",
    )

    parser.add_argument(
        "-b", "--backend",
        action="append",
        dest="backends",
        help="Backend to translate for (repeatable, default: all configured backends)",
    )

    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file (YAML)",
    )

    parser.add_argument(
        "-o", "--output",
        help="Output file path for results",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    args = parser.parse_args()

    # Load configuration and queries
    try:
        config = load_config(args.config) if args.config else AppConfig()
        setup_logging(config.logging.level, debug=args.verbose, fmt=config.logging.format)

        if args.verbose:
            print(f"Loading queries from {args.queries}", file=sys.stderr)

        queries = load_queries(args.queries)

        if args.verbose:
            print(f"Loaded {len(queries)} queries", file=sys.stderr)

        drivers = create_drivers(config, args.backends)

    except (ValueError, TSDBError) as e:
        print(json.dumps({"error": str(e)}, indent=2), file=sys.stderr)
        sys.exit(1)

    if not queries:
        print("No queries found in query file", file=sys.stderr)
        return

    results = translate_queries(queries, drivers, args.verbose)

    # Output results
    output = json.dumps(results, indent=2)

    if args.output:
        Path(args.output).write_text(output)
        if args.verbose:
            print(f"Results saved to {args.output}", file=sys.stderr)
    else:
        print(output)


if __name__ == "__main__":
    main()
