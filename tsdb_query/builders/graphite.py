"""
Graphite render API query builder.

Graphite queries are function compositions over dotted metric paths. The
builder starts from the metric path, narrows it with the query's
conditions, wraps it in consolidation, summarize and alias calls, and
form-encodes the resulting target together with from/until.
"""

from typing import Any, List, Optional
from urllib.parse import urlencode

from ..models import Aggregation, ComparisonOperator, Query, QueryCondition
from ..raw_query import GraphiteRawQuery
from ..timeutils import GRAPHITE_UNITS, INTERVAL_PATTERN, epoch, format_number
from .base import QueryBuilder

CONSOLIDATION_FUNCTIONS = {
    'avg': 'averageSeries',
    'mean': 'averageSeries',
    'sum': 'sumSeries',
    'count': 'countSeries',
    'min': 'minSeries',
    'max': 'maxSeries',
    'stddev': 'stdev',
}

SUMMARIZE_FUNCTIONS = {
    'avg': 'avg',
    'mean': 'avg',
    'sum': 'sum',
    'count': 'count',
    'min': 'min',
    'max': 'max',
    'stddev': 'stddev',
    'first': 'first',
    'last': 'last',
    'percentile': 'avg',
}

INTERVAL_WORDS = {
    's': 'second',
    'm': 'minute',
    'h': 'hour',
    'd': 'day',
    'w': 'week',
}


class GraphiteQueryBuilder(QueryBuilder):
    """Builds render API query strings for Graphite."""

    backend = 'graphite'

    def __init__(self, prefix: str = ''):
        """Initialize the builder.

        Args:
            prefix: Optional path prefix prepended to every metric
        """
        super().__init__()
        self.prefix = prefix

    def build(self, query: Query) -> GraphiteRawQuery:
        self._check_query(query)

        path = f'{self.prefix}.{query.measurement}' if self.prefix else query.measurement
        if query.selects_all_fields():
            target = f'{path}.*'
        elif len(query.fields) > 1:
            target = 'group(' + ', '.join(f'"{path}.{name}"' for name in query.fields) + ')'
        else:
            target = f'{path}.{query.fields[0]}'

        target = self._apply_conditions(target, query.conditions)

        if query.aggregations:
            targets = [self._aggregate(target, agg, query.interval) for agg in query.aggregations]
            target = targets[0] if len(targets) == 1 else 'group(' + ','.join(targets) + ')'
        elif query.interval:
            target = f'summarize({target}, "{self.interval_word(query.interval)}", "avg")'

        if query.limit_count is not None:
            target = f'limit({target}, {query.limit_count})'

        for direction in query.order.values():
            if direction == 'DESC':
                target = f'sortByMaxima({target})'
            else:
                target = f'sortByMinima({target})'

        for clause, present in (
            ('timezone', bool(query.timezone_name)),
            ('having', bool(query.having_conditions)),
            ('offset', query.offset_count is not None),
            ('distinct', query.distinct),
        ):
            if present:
                self._skip(clause)

        params = [
            ('target', target),
            ('from', self._from(query)),
            ('until', str(epoch(query.end_time)) if query.end_time is not None else 'now'),
            ('format', 'json'),
        ]
        query_string = urlencode(params).replace('%2A', '*')

        self.logger.debug("Built Graphite target: %s", target)
        return GraphiteRawQuery(query_string)

    def _apply_conditions(self, target: str, conditions: List[QueryCondition]) -> str:
        for condition in conditions:
            operator = condition.operator
            value = condition.scalar_value
            if operator.is_equality:
                target = target.replace('*', str(value), 1)
            elif operator.is_inequality:
                target = f'exclude({target}, {self.quote(value)})'
            elif operator is ComparisonOperator.REGEX:
                target = f'grep({target}, {self.quote(value)})'
            else:
                self._skip(f"{operator.value} condition on '{condition.field}'")
        return target

    def _aggregate(self, target: str, aggregation: Aggregation, interval: Optional[str]) -> str:
        """Consolidate, then summarize, then alias one aggregation."""
        function = aggregation.function
        if function == 'percentile':
            result = f'percentileOfSeries({target}, {format_number(aggregation.percentile)})'
        elif function in CONSOLIDATION_FUNCTIONS:
            result = f'{CONSOLIDATION_FUNCTIONS[function]}({target})'
        else:
            # first/last have no series-level consolidation
            result = target

        if interval:
            result = f'summarize({result}, "{self.interval_word(interval)}", "{SUMMARIZE_FUNCTIONS[function]}")'
        if aggregation.alias:
            result = f'alias({result}, {self.quote(aggregation.alias)})'
        return result

    def _from(self, query: Query) -> str:
        if query.start_time is not None:
            return str(epoch(query.start_time))
        if query.relative_time is not None:
            return '-' + query.relative_time.format(GRAPHITE_UNITS)
        return '-1h'

    @staticmethod
    def interval_word(interval: str) -> str:
        """Translate '5m' into '5minute'; unknown forms pass through."""
        match = INTERVAL_PATTERN.match(interval)
        if not match:
            return interval
        return f'{match.group(1)}{INTERVAL_WORDS[match.group(2)]}'

    @staticmethod
    def quote(value: Any) -> str:
        """Render a double-quoted Graphite string argument."""
        text = str(value).replace('\\', '\\\\').replace('"', '\\"')
        return f'"{text}"'
