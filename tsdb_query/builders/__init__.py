"""
Backend query builders.

Each builder lowers a backend-agnostic Query into the native query of one
time series database.
"""

from typing import Optional, Union

from ..config import GraphiteConfig, InfluxDBConfig, PrometheusConfig, RRDtoolConfig
from ..exceptions import QueryError
from ..tags import create_tag_strategy
from .base import QueryBuilder
from .graphite import GraphiteQueryBuilder
from .influxdb import InfluxDBQueryBuilder
from .prometheus import PrometheusQueryBuilder
from .rrdtool import RRDtoolQueryBuilder

BuilderConfig = Union[InfluxDBConfig, PrometheusConfig, GraphiteConfig, RRDtoolConfig]

BUILDER_BACKENDS = ('influxdb', 'prometheus', 'graphite', 'rrdtool')


def create_builder(name: str, config: Optional[BuilderConfig] = None) -> QueryBuilder:
    """Create the query builder for a backend.

    Args:
        name: Backend name ('influxdb', 'prometheus', 'graphite' or 'rrdtool')
        config: Backend settings (defaults when omitted)

    Returns:
        Configured builder

    Raises:
        QueryError: If the backend has no query builder
    """
    if name == 'influxdb':
        config = config or InfluxDBConfig()
        return InfluxDBQueryBuilder(bucket=config.bucket or '%bucket%')
    if name == 'prometheus':
        return PrometheusQueryBuilder()
    if name == 'graphite':
        config = config or GraphiteConfig()
        return GraphiteQueryBuilder(prefix=config.prefix)
    if name == 'rrdtool':
        config = config or RRDtoolConfig()
        strategy = create_tag_strategy(config.tag_strategy, config.base_dir, config.folder_tags)
        return RRDtoolQueryBuilder(strategy, default_step=config.default_step)
    raise QueryError(f"No query builder for backend: {name}")


__all__ = [
    'BUILDER_BACKENDS',
    'GraphiteQueryBuilder',
    'InfluxDBQueryBuilder',
    'PrometheusQueryBuilder',
    'QueryBuilder',
    'RRDtoolQueryBuilder',
    'create_builder',
]
