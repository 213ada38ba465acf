"""
TSDB Query - backend-agnostic time series queries.

Describes queries once and translates them into InfluxDB Flux,
Prometheus PromQL, Graphite render targets and rrdtool xport commands.
"""

from .aggregate import AggregateDriver
from .builders import (
    GraphiteQueryBuilder,
    InfluxDBQueryBuilder,
    PrometheusQueryBuilder,
    QueryBuilder,
    RRDtoolQueryBuilder,
    create_builder,
)
from .config import AppConfig, load_config, setup_logging
from .drivers import BuilderDriver, NullDriver, NullTransport, TimeSeriesDriver, Transport
from .exceptions import (
    ConfigurationError,
    DatabaseError,
    DriverConnectionError,
    DriverError,
    QueryError,
    RawQueryError,
    TagResolutionError,
    TSDBError,
    WriteError,
)
from .models import (
    Aggregation,
    ComparisonOperator,
    DataPoint,
    Query,
    QueryCondition,
    QueryResult,
)
from .raw_query import (
    GraphiteRawQuery,
    InfluxDBRawQuery,
    PrometheusRawQuery,
    RawQuery,
    RRDtoolRawQuery,
)
from .registry import DriverRegistry, create_default_registry
from .tags import (
    FileNameStrategy,
    FolderStrategy,
    NoTagsStrategy,
    TagCondition,
    TagConditionGroup,
    TagSearch,
    create_tag_strategy,
)

__all__ = [
    'AggregateDriver',
    'Aggregation',
    'AppConfig',
    'BuilderDriver',
    'ComparisonOperator',
    'ConfigurationError',
    'DataPoint',
    'DatabaseError',
    'DriverConnectionError',
    'DriverError',
    'DriverRegistry',
    'FileNameStrategy',
    'FolderStrategy',
    'GraphiteQueryBuilder',
    'GraphiteRawQuery',
    'InfluxDBQueryBuilder',
    'InfluxDBRawQuery',
    'NoTagsStrategy',
    'NullDriver',
    'NullTransport',
    'PrometheusQueryBuilder',
    'PrometheusRawQuery',
    'Query',
    'QueryBuilder',
    'QueryCondition',
    'QueryError',
    'QueryResult',
    'RRDtoolQueryBuilder',
    'RRDtoolRawQuery',
    'RawQuery',
    'RawQueryError',
    'TSDBError',
    'TagCondition',
    'TagConditionGroup',
    'TagResolutionError',
    'TagSearch',
    'TimeSeriesDriver',
    'Transport',
    'WriteError',
    'create_builder',
    'create_default_registry',
    'create_tag_strategy',
    'load_config',
    'setup_logging',
]
