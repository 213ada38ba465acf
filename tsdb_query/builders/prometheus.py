"""
Prometheus query builder.

Produces a PromQL expression from a label selector. Time bounds and the
result limit cannot be expressed in PromQL itself, so they are appended
as trailing '# key: value' comments which the transport turns into
request parameters.
"""

from typing import Any, List

from ..models import ComparisonOperator, Query, QueryCondition
from ..raw_query import PrometheusRawQuery
from ..timeutils import PROMETHEUS_UNITS, format_number, isoformat
from .base import QueryBuilder

AGGREGATE_FUNCTIONS = {
    'avg': 'avg',
    'mean': 'avg',
    'sum': 'sum',
    'min': 'min',
    'max': 'max',
    'count': 'count',
    'stddev': 'stddev',
}


class PrometheusQueryBuilder(QueryBuilder):
    """Builds PromQL expressions."""

    backend = 'prometheus'
    supported_functions = frozenset(AGGREGATE_FUNCTIONS) | {'percentile'}

    def build(self, query: Query) -> PrometheusRawQuery:
        self._check_query(query)

        selector = query.measurement
        matchers = self._label_matchers(query.conditions)
        if matchers:
            selector += '{' + ','.join(matchers) + '}'

        expression = selector
        if query.aggregations:
            aggregation = query.aggregations[0]
            if len(query.aggregations) > 1:
                self.logger.debug("PromQL takes a single aggregation, using '%s'", aggregation.function)

            if aggregation.function == 'percentile':
                function = 'quantile'
                args = f'{format_number(round(aggregation.percentile / 100, 10))}, {selector}'
            else:
                function = AGGREGATE_FUNCTIONS[aggregation.function]
                args = selector

            if query.group_by_tags:
                expression = f"{function} by ({','.join(query.group_by_tags)}) ({args})"
            else:
                expression = f'{function}({args})'

        if query.interval and not query.group_by_tags:
            expression = f'rate({expression}[{query.interval}])'

        if query.math_expressions:
            if len(query.math_expressions) > 1:
                self.logger.debug("PromQL takes a single math expression, using the first")
            expression = f'({expression}) {query.math_expressions[0].expression}'

        if query.limit_count is not None:
            expression += f' # limit: {query.limit_count}'

        if query.start_time is not None and query.end_time is not None:
            expression += (
                f' # time range: {isoformat(query.start_time)} to {isoformat(query.end_time)}'
            )
        elif query.relative_time is not None:
            expression += f' # relative time: {query.relative_time.format(PROMETHEUS_UNITS, " ")}'

        for clause, present in (
            ('order by', bool(query.order)),
            ('offset', query.offset_count is not None),
            ('distinct', query.distinct),
            ('having', bool(query.having_conditions)),
        ):
            if present:
                self._skip(clause)

        self.logger.debug("Built PromQL query: %s", expression)
        return PrometheusRawQuery(expression)

    def _label_matchers(self, conditions: List[QueryCondition]) -> List[str]:
        matchers = []
        for condition in conditions:
            operator = condition.operator
            label = condition.field

            if label == 'time':
                self._skip("time condition")
            elif operator.is_equality:
                matchers.append(f'{label}={self._quote(condition.scalar_value)}')
            elif operator.is_inequality:
                matchers.append(f'{label}!={self._quote(condition.scalar_value)}')
            elif operator in (ComparisonOperator.REGEX, ComparisonOperator.LIKE):
                matchers.append(f'{label}=~{self._quote(condition.scalar_value)}')
            elif operator is ComparisonOperator.NOT_REGEX:
                matchers.append(f'{label}!~{self._quote(condition.scalar_value)}')
            elif operator is ComparisonOperator.IN:
                matchers.append(f'{label}=~{self._quote(self._alternation(condition.values))}')
            elif operator is ComparisonOperator.NOT_IN:
                matchers.append(f'{label}!~{self._quote(self._alternation(condition.values))}')
            else:
                self._skip(f"{operator.value} condition on '{label}'")
        return matchers

    def _alternation(self, values: List[Any]) -> str:
        return '^(' + '|'.join(self._coerce(v) for v in values) + ')$'

    @staticmethod
    def _coerce(value: Any) -> str:
        if isinstance(value, bool):
            return '1' if value else ''
        if value is None:
            return ''
        return str(value)

    def _quote(self, value: Any) -> str:
        text = self._coerce(value).replace('\\', '\\\\').replace('"', '\\"')
        return f'"{text}"'
