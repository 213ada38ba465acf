"""
InfluxDB 2.x query builder.

Lowers a Query into a Flux pipeline: one stage per line, each line
introduced by '|>'. Stage order matters because Flux aggregation
functions consume the _value column, so windows are declared before
aggregations and column copies are made before the first aggregate runs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import QueryError
from ..models import ComparisonOperator, Query, QueryCondition
from ..raw_query import InfluxDBRawQuery
from ..timeutils import FLUX_UNITS, format_number, isoformat
from .base import QueryBuilder

STAGE_SEPARATOR = '\n  |> '

AGGREGATE_STAGES = {
    'avg': 'mean',
    'mean': 'mean',
    'sum': 'sum',
    'count': 'count',
    'min': 'min',
    'max': 'max',
    'first': 'first',
    'last': 'last',
    'stddev': 'stddev',
}

REGEX_OPERATORS = (
    ComparisonOperator.REGEX,
    ComparisonOperator.LIKE,
    ComparisonOperator.NOT_REGEX,
)


class InfluxDBQueryBuilder(QueryBuilder):
    """Builds Flux scripts for InfluxDB 2.x."""

    backend = 'influxdb'

    def __init__(self, bucket: str = '%bucket%'):
        """Initialize the builder.

        Args:
            bucket: Bucket name used in the from() stage
        """
        super().__init__()
        self.bucket = bucket

    def build(self, query: Query) -> InfluxDBRawQuery:
        self._check_query(query)

        stages = [f'from(bucket: "{self.bucket}")', self._range_stage(query)]

        # Time zone alignment applies to everything downstream
        if query.timezone_name:
            stages.append(f'timeShift(duration: 0s, timeZone: "{query.timezone_name}")')

        stages.append(f'filter(fn: (r) => r._measurement == {self.format_value(query.measurement)})')
        stages.extend(self._condition_stages(query.conditions))

        if not query.selects_all_fields():
            field_filter = ' or '.join(
                f'r._field == {self.format_value(name)}' for name in query.fields
            )
            stages.append(f'filter(fn: (r) => {field_filter})')
        if query.distinct:
            stages.append('distinct()')

        if query.group_by_tags:
            columns = ', '.join(self.format_value(tag) for tag in query.group_by_tags)
            stages.append(f'group(columns: [{columns}])')
        if query.interval:
            stages.append(f'window(every: {query.interval})')

        stages.extend(self._aggregation_stages(query))

        fill_stage = self._fill_stage(query)
        if fill_stage:
            stages.append(fill_stage)

        for expr in query.math_expressions:
            stages.append(f'map(fn: (r) => ({{ r with {expr.alias}: {expr.expression} }}))')

        for clause in query.having_conditions:
            predicate, _ = self._predicate(QueryCondition(clause.field, clause.operator, clause.value))
            stages.append(f'filter(fn: (r) => {predicate})')

        for name, direction in query.order.items():
            desc = 'true' if direction == 'DESC' else 'false'
            stages.append(f'sort(columns: [{self.format_value(name)}], desc: {desc})')

        if query.offset_count is not None:
            stages.append(f'tail(offset: {query.offset_count})')
        if query.limit_count is not None:
            stages.append(f'limit(n: {query.limit_count})')

        script = STAGE_SEPARATOR.join(stages).rstrip()
        if query.fill_policy == 'linear':
            script = 'import "interpolate"\n\n' + script

        self.logger.debug("Built Flux query: %s", script)
        return InfluxDBRawQuery(script)

    def _range_stage(self, query: Query) -> str:
        if query.relative_time is not None:
            return f'range(start: -{query.relative_time.format(FLUX_UNITS)})'
        if query.start_time is not None and query.end_time is not None:
            return f'range(start: {isoformat(query.start_time)}, stop: {isoformat(query.end_time)})'
        if query.start_time is not None:
            return f'range(start: {isoformat(query.start_time)})'
        if query.end_time is not None:
            return f'range(start: 0, stop: {isoformat(query.end_time)})'
        return 'range(start: -1h)'

    def _condition_stages(self, conditions: List[QueryCondition]) -> List[str]:
        """Compile conditions into filter stages.

        AND-only chains become one stage per condition. A chain containing
        an OR connective becomes a single stage evaluated left to right,
        e.g. 'A AND B OR C' is compiled as '(A and B) or C'.
        """
        if not conditions:
            return []

        if all(c.connective == 'AND' for c in conditions[1:]):
            return [f'filter(fn: (r) => {self._predicate(c)[0]})' for c in conditions]

        expression, compound = self._predicate(conditions[0])
        for condition in conditions[1:]:
            predicate, predicate_compound = self._predicate(condition)
            left = f'({expression})' if compound else expression
            right = f'({predicate})' if predicate_compound else predicate
            expression = f'{left} {condition.connective.lower()} {right}'
            compound = True
        return [f'filter(fn: (r) => {expression})']

    def _predicate(self, condition: QueryCondition) -> Tuple[str, bool]:
        """Compile one condition.

        Returns:
            Tuple of (Flux expression, whether it joins several terms)
        """
        operator = condition.operator
        ref = 'r._time' if condition.field == 'time' else f'r["{condition.field}"]'

        if operator is ComparisonOperator.IN:
            values = ', '.join(self.format_value(v) for v in condition.values)
            return f'contains(value: {ref}, set: [{values}])', False

        if operator is ComparisonOperator.NOT_IN:
            terms = [f'{ref} != {self.format_value(v)}' for v in condition.values]
            if not terms:
                return 'true', False
            return ' and '.join(terms), len(terms) > 1

        if operator is ComparisonOperator.BETWEEN:
            low, high = condition.between_bounds()
            return f'{ref} >= {self.format_value(low)} and {ref} <= {self.format_value(high)}', True

        if operator in REGEX_OPERATORS:
            return f'{ref} {operator.to_flux()} {self._regex_literal(condition.scalar_value)}', False

        return f'{ref} {operator.to_flux()} {self.format_value(condition.scalar_value)}', False

    def _aggregation_stages(self, query: Query) -> List[str]:
        """Emit column copies, then one aggregate (plus rename) per request."""
        consumed: Dict[str, int] = {}
        duplicates = []
        stages = []

        for aggregation in query.aggregations:
            column = aggregation.field or '_value'
            if column in consumed:
                consumed[column] += 1
                copy = f'{column}_copy{consumed[column]}'
                duplicates.append(f'duplicate(column: "{column}", as: "{copy}")')
                column = copy
            else:
                consumed[column] = 0

            if aggregation.function == 'percentile':
                rank = format_number(round(aggregation.percentile / 100, 10))
                stages.append(f'quantile(q: {rank}, column: "{column}")')
            else:
                stages.append(f'{AGGREGATE_STAGES[aggregation.function]}(column: "{column}")')

            if aggregation.alias:
                stages.append(f'rename(columns: {{_value: "{aggregation.alias}"}})')

        return duplicates + stages

    def _fill_stage(self, query: Query) -> Optional[str]:
        policy = query.fill_policy
        if policy is None or policy == 'none':
            return None
        if policy == 'null':
            return 'fill(value: null)'
        if policy == 'previous':
            return 'fill(usePrevious: true)'
        if policy == 'value':
            return f'fill(value: {self.format_value(query.fill_constant)})'
        if policy == 'linear':
            if not query.interval:
                raise QueryError('Linear fill requires a time interval')
            return f'interpolate.linear(every: {query.interval})'
        raise QueryError(f"Unsupported fill policy: {policy}")

    @staticmethod
    def _regex_literal(pattern: Any) -> str:
        pattern = str(pattern)
        if len(pattern) >= 2 and pattern.startswith('/') and pattern.endswith('/'):
            return pattern
        return '/' + pattern.replace('/', '\\/') + '/'

    @staticmethod
    def format_value(value: Any) -> str:
        """Render a Python value as a Flux literal.

        Raises:
            QueryError: If the value has no Flux representation
        """
        if isinstance(value, bool):
            return 'true' if value else 'false'
        if value is None:
            return 'null'
        if isinstance(value, str):
            escaped = value.replace('\\', '\\\\').replace('"', '\\"')
            return f'"{escaped}"'
        if isinstance(value, datetime):
            return f'time(v: "{isoformat(value)}")'
        if isinstance(value, (int, float)):
            return repr(value) if isinstance(value, float) else str(value)
        raise QueryError(f"Unsupported value type for Flux: {type(value).__name__}")
