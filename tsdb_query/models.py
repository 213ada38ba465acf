"""
Data models for the TSDB query library.

Defines the backend-agnostic query description (Query and its parts), the
data point written to drivers, and the normalised QueryResult returned by
them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .exceptions import QueryError
from .timeutils import Duration, parse_duration, parse_timestamp, to_utc


class ComparisonOperator(str, Enum):
    """Operators accepted in query conditions."""
    EQUALS = '='
    SAME = '=='
    NOT_EQUALS = '!='
    NOT_EQUALS_ALT = '<>'
    GREATER_THAN = '>'
    GREATER_THAN_OR_EQUAL = '>='
    LESS_THAN = '<'
    LESS_THAN_OR_EQUAL = '<='
    LIKE = 'LIKE'
    REGEX = 'REGEX'
    NOT_REGEX = 'NOT REGEX'
    IN = 'IN'
    NOT_IN = 'NOT IN'
    BETWEEN = 'BETWEEN'

    @classmethod
    def parse(cls, value: Union[str, 'ComparisonOperator']) -> 'ComparisonOperator':
        """Look up an operator, ignoring case and surrounding whitespace.

        Raises:
            QueryError: If the operator is unknown
        """
        if isinstance(value, cls):
            return value
        normalized = ' '.join(str(value).split()).upper()
        try:
            return cls(normalized)
        except ValueError:
            raise QueryError(f"Unsupported operator: {value}")

    @property
    def requires_sequence(self) -> bool:
        return self in (ComparisonOperator.IN, ComparisonOperator.NOT_IN, ComparisonOperator.BETWEEN)

    @property
    def is_equality(self) -> bool:
        return self in (ComparisonOperator.EQUALS, ComparisonOperator.SAME)

    @property
    def is_inequality(self) -> bool:
        return self in (ComparisonOperator.NOT_EQUALS, ComparisonOperator.NOT_EQUALS_ALT)

    def to_flux(self) -> str:
        """Return the Flux spelling of the operator."""
        if self is ComparisonOperator.EQUALS:
            return '=='
        if self is ComparisonOperator.NOT_EQUALS_ALT:
            return '!='
        if self in (ComparisonOperator.LIKE, ComparisonOperator.REGEX):
            return '=~'
        if self is ComparisonOperator.NOT_REGEX:
            return '!~'
        return self.value


CONNECTIVES = ('AND', 'OR')

AGGREGATE_FUNCTIONS = (
    'avg', 'mean', 'sum', 'count', 'min', 'max',
    'first', 'last', 'stddev', 'percentile',
)

FILL_POLICIES = ('null', 'none', 'previous', 'linear', 'value')

ORDER_DIRECTIONS = ('ASC', 'DESC')


@dataclass
class QueryCondition:
    """A single filter predicate.

    Attributes:
        field: The field or tag name the predicate applies to
        operator: The comparison operator
        value: Scalar value, or a sequence for IN, NOT IN and BETWEEN
        connective: How the predicate joins the previous one (AND/OR)
    """
    field: str
    operator: ComparisonOperator
    value: Any
    connective: str = 'AND'

    def __post_init__(self):
        self.operator = ComparisonOperator.parse(self.operator)
        self.connective = str(self.connective).upper()
        if self.connective not in CONNECTIVES:
            raise QueryError(f"Invalid condition connective: {self.connective}")

    @property
    def scalar_value(self) -> Any:
        """The value, or its first element when the value is a sequence."""
        if isinstance(self.value, (list, tuple)):
            return self.value[0] if self.value else None
        return self.value

    @property
    def values(self) -> List[Any]:
        """The value as a list."""
        if isinstance(self.value, (list, tuple)):
            return list(self.value)
        return [self.value]

    def between_bounds(self) -> Tuple[Any, Any]:
        """Return (low, high) for a BETWEEN condition.

        Raises:
            QueryError: If the value is not a pair
        """
        values = self.values
        if len(values) != 2:
            raise QueryError(
                f"BETWEEN condition on '{self.field}' requires exactly two values"
            )
        return values[0], values[1]


@dataclass
class Aggregation:
    """One aggregation request.

    Attributes:
        function: Aggregation function name (lower-case)
        field: Source field, or None for the backend's default column
        alias: Output name
        percentile: Rank for the percentile function (0-100)
    """
    function: str
    field: Optional[str] = None
    alias: Optional[str] = None
    percentile: Optional[float] = None

    def __post_init__(self):
        self.function = str(self.function).lower()

    @property
    def output_name(self) -> str:
        """Alias, or '<field>_<function>' when no alias was given."""
        return self.alias or f"{self.field or 'value'}_{self.function}"


@dataclass
class MathExpression:
    """A derived value computed from the selected series."""
    expression: str
    alias: str


@dataclass
class HavingCondition:
    """A post-aggregation filter."""
    field: str
    operator: ComparisonOperator
    value: Any

    def __post_init__(self):
        self.operator = ComparisonOperator.parse(self.operator)


def _optional_string(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise QueryError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _string_list(data: Dict[str, Any], key: str) -> List[str]:
    """Read a string or a list of strings."""
    value = data.get(key)
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    raise QueryError(f"'{key}' must be a string or a list of strings")


def _mapping_list(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise QueryError(f"'{key}' must be a list of mappings")
    return value


class Query:
    """Backend-agnostic description of a time-series query.

    Every setter returns the query itself so calls can be chained:

        Query('cpu_usage').where('host', '=', 'server1').latest('1h').avg('value')

    Nothing is validated while the query is being built; builders reject
    what their backend cannot translate.
    """

    def __init__(self, measurement: str):
        self.measurement = measurement
        self.fields: List[str] = ['*']
        self.distinct = False
        self.conditions: List[QueryCondition] = []
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.relative_time: Optional[Duration] = None
        self.timezone_name: Optional[str] = None
        self.group_by_tags: List[str] = []
        self.interval: Optional[str] = None
        self.aggregations: List[Aggregation] = []
        self.fill_policy: Optional[str] = None
        self.fill_constant: Any = None
        self.math_expressions: List[MathExpression] = []
        self.order: Dict[str, str] = {}
        self.limit_count: Optional[int] = None
        self.offset_count: Optional[int] = None
        self.having_conditions: List[HavingCondition] = []

    def __repr__(self) -> str:
        return f"Query({self.measurement!r}, fields={self.fields!r}, conditions={len(self.conditions)})"

    # Selection

    def select(self, fields: Union[str, List[str]]) -> 'Query':
        self.fields = [fields] if isinstance(fields, str) else list(fields)
        return self

    def select_distinct(self, fields: Union[str, List[str]]) -> 'Query':
        self.select(fields)
        self.distinct = True
        return self

    # Filters

    def where(self, field: str, operator: str, value: Any, connective: str = 'AND') -> 'Query':
        self.conditions.append(QueryCondition(field, operator, value, connective))
        return self

    def or_where(self, field: str, operator: str, value: Any) -> 'Query':
        return self.where(field, operator, value, 'OR')

    def where_in(self, field: str, values: List[Any]) -> 'Query':
        return self.where(field, ComparisonOperator.IN, list(values))

    def where_not_in(self, field: str, values: List[Any]) -> 'Query':
        return self.where(field, ComparisonOperator.NOT_IN, list(values))

    def where_between(self, field: str, low: Any, high: Any) -> 'Query':
        return self.where(field, ComparisonOperator.BETWEEN, [low, high])

    def where_regex(self, field: str, pattern: str) -> 'Query':
        return self.where(field, ComparisonOperator.REGEX, pattern)

    # Time

    def time_range(self, start: datetime, end: datetime) -> 'Query':
        self.start_time = start
        self.end_time = end
        self.relative_time = None
        return self

    def since(self, start: datetime) -> 'Query':
        self.start_time = start
        self.end_time = None
        self.relative_time = None
        return self

    def until(self, end: datetime) -> 'Query':
        self.end_time = end
        return self

    def latest(self, duration: str) -> 'Query':
        """Restrict the query to a window ending now.

        Args:
            duration: Compact duration such as '15m', '1h', '2w'

        Raises:
            QueryError: If the duration cannot be parsed
        """
        self.relative_time = parse_duration(duration)
        self.start_time = None
        self.end_time = None
        return self

    def timezone(self, name: str) -> 'Query':
        self.timezone_name = name
        return self

    # Grouping

    def group_by(self, tags: Union[str, List[str]], interval: Optional[str] = None) -> 'Query':
        self.group_by_tags = [tags] if isinstance(tags, str) else list(tags)
        if interval is not None:
            self.interval = interval
        return self

    def group_by_time(self, interval: str) -> 'Query':
        self.interval = interval
        return self

    # Aggregations

    def aggregate(self, function: str, field: Optional[str] = None, alias: Optional[str] = None) -> 'Query':
        self.aggregations.append(Aggregation(function, field, alias))
        return self

    def sum(self, field: str, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('sum', field, alias)

    def avg(self, field: str, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('avg', field, alias)

    def count(self, field: Optional[str] = None, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('count', field, alias)

    def min(self, field: str, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('min', field, alias)

    def max(self, field: str, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('max', field, alias)

    def first(self, field: str, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('first', field, alias)

    def last(self, field: str, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('last', field, alias)

    def stddev(self, field: str, alias: Optional[str] = None) -> 'Query':
        return self.aggregate('stddev', field, alias)

    def percentile(self, field: str, percentile: float, alias: Optional[str] = None) -> 'Query':
        self.aggregations.append(Aggregation('percentile', field, alias, percentile))
        return self

    # Fill

    def fill(self, policy: str, value: Any = None) -> 'Query':
        self.fill_policy = str(policy).lower()
        self.fill_constant = value
        return self

    def fill_null(self) -> 'Query':
        return self.fill('null')

    def fill_none(self) -> 'Query':
        return self.fill('none')

    def fill_previous(self) -> 'Query':
        return self.fill('previous')

    def fill_linear(self) -> 'Query':
        return self.fill('linear')

    def fill_value(self, value: Any) -> 'Query':
        return self.fill('value', value)

    # Post-processing

    def math(self, expression: str, alias: str) -> 'Query':
        self.math_expressions.append(MathExpression(expression, alias))
        return self

    def limit(self, count: int) -> 'Query':
        if count < 0:
            raise QueryError("Limit must be a non-negative integer")
        self.limit_count = count
        return self

    def offset(self, count: int) -> 'Query':
        if count < 0:
            raise QueryError("Offset must be a non-negative integer")
        self.offset_count = count
        return self

    def order_by(self, field: str, direction: str = 'ASC') -> 'Query':
        direction = str(direction).upper()
        if direction not in ORDER_DIRECTIONS:
            raise QueryError(f"Invalid order direction: {direction}")
        self.order[field] = direction
        return self

    def order_by_time(self, direction: str = 'ASC') -> 'Query':
        return self.order_by('time', direction)

    def having(self, field: str, operator: str, value: Any) -> 'Query':
        self.having_conditions.append(HavingCondition(field, operator, value))
        return self

    # Introspection

    def has_aggregations(self) -> bool:
        return bool(self.aggregations)

    def has_time_grouping(self) -> bool:
        return self.interval is not None

    def selects_all_fields(self) -> bool:
        return not self.fields or '*' in self.fields

    def conditions_for_field(self, field: str) -> List[QueryCondition]:
        return [c for c in self.conditions if c.field == field]

    def and_conditions(self) -> List[QueryCondition]:
        return [c for c in self.conditions if c.connective == 'AND']

    def or_conditions(self) -> List[QueryCondition]:
        return [c for c in self.conditions if c.connective == 'OR']

    def validate(self) -> List[str]:
        """Check the query for semantic problems.

        Returns:
            List of problem descriptions (empty when the query is sound)
        """
        errors = []
        if not self.measurement:
            errors.append('Measurement is required')
        if self.aggregations and not self.group_by_tags and not self.has_time_grouping():
            errors.append('Aggregations require GROUP BY clause or time interval')
        if self.having_conditions and not self.aggregations:
            errors.append('HAVING clause requires aggregation functions')
        return errors

    # Serialisation

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Query':
        """Build a query from a plain mapping.

        Recognised keys mirror the fluent API: measurement, fields,
        distinct, conditions, start, end, latest, timezone, group_by,
        interval, aggregations, fill, math, order_by, limit, offset and
        having.

        Args:
            data: Mapping describing the query

        Returns:
            Populated Query

        Raises:
            QueryError: If the mapping is malformed
        """
        if not isinstance(data, dict):
            raise QueryError("Query definition must be a mapping")
        measurement = data.get('measurement')
        if not isinstance(measurement, str):
            raise QueryError("Query definition requires a 'measurement' string")

        query = cls(measurement)

        fields = _string_list(data, 'fields')
        if fields:
            if data.get('distinct'):
                query.select_distinct(fields)
            else:
                query.select(fields)

        for condition in _mapping_list(data, 'conditions'):
            try:
                query.where(
                    condition['field'],
                    condition.get('operator', '='),
                    condition.get('value'),
                    condition.get('connective', 'AND'),
                )
            except (KeyError, TypeError, AttributeError):
                raise QueryError(f"Invalid condition: {condition!r}")

        latest = _optional_string(data, 'latest')
        if latest:
            query.latest(latest)
        else:
            start = parse_timestamp(data.get('start'))
            end = parse_timestamp(data.get('end'))
            if start is not None and end is not None:
                query.time_range(start, end)
            elif start is not None:
                query.since(start)
            elif end is not None:
                query.until(end)

        timezone_name = _optional_string(data, 'timezone')
        if timezone_name:
            query.timezone(timezone_name)
        group_by = _string_list(data, 'group_by')
        if group_by:
            query.group_by(group_by)
        interval = _optional_string(data, 'interval')
        if interval:
            query.group_by_time(interval)

        for agg in _mapping_list(data, 'aggregations'):
            function = agg.get('function')
            if not isinstance(function, str):
                raise QueryError(f"Invalid aggregation: {agg!r}")
            source = agg.get('field')
            if source is not None and not isinstance(source, str):
                raise QueryError(f"Invalid aggregation field: {source!r}")
            percentile = agg.get('percentile')
            if percentile is not None and (
                isinstance(percentile, bool) or not isinstance(percentile, (int, float))
            ):
                raise QueryError(f"Invalid percentile: {percentile!r}")
            query.aggregations.append(Aggregation(function, source, agg.get('alias'), percentile))

        fill = data.get('fill')
        if isinstance(fill, dict):
            query.fill(fill.get('policy', 'null'), fill.get('value'))
        elif fill is not None:
            query.fill(fill)

        try:
            for expr in _mapping_list(data, 'math'):
                query.math(expr['expression'], expr['alias'])

            order_by = data.get('order_by') or {}
            if isinstance(order_by, dict):
                for name, direction in order_by.items():
                    query.order_by(name, direction)
            else:
                for entry in order_by:
                    query.order_by(entry['field'], entry.get('direction', 'ASC'))

            if data.get('limit') is not None:
                query.limit(int(data['limit']))
            if data.get('offset') is not None:
                query.offset(int(data['offset']))

            for clause in _mapping_list(data, 'having'):
                query.having(clause['field'], clause.get('operator', '='), clause.get('value'))
        except QueryError:
            raise
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise QueryError(f"Invalid query definition: {e}")

        return query

    def to_dict(self) -> Dict[str, Any]:
        """Convert the query to a plain mapping accepted by from_dict."""
        data: Dict[str, Any] = {
            'measurement': self.measurement,
            'fields': list(self.fields),
            'distinct': self.distinct,
            'conditions': [
                {
                    'field': c.field,
                    'operator': c.operator.value,
                    'value': c.value,
                    'connective': c.connective,
                }
                for c in self.conditions
            ],
        }
        if self.relative_time is not None:
            data['latest'] = self.relative_time.compact()
        if self.start_time is not None:
            data['start'] = to_utc(self.start_time).isoformat()
        if self.end_time is not None:
            data['end'] = to_utc(self.end_time).isoformat()
        if self.timezone_name:
            data['timezone'] = self.timezone_name
        if self.group_by_tags:
            data['group_by'] = list(self.group_by_tags)
        if self.interval:
            data['interval'] = self.interval
        if self.aggregations:
            data['aggregations'] = [
                {k: v for k, v in vars(agg).items() if v is not None}
                for agg in self.aggregations
            ]
        if self.fill_policy:
            data['fill'] = {'policy': self.fill_policy, 'value': self.fill_constant}
        if self.math_expressions:
            data['math'] = [vars(expr).copy() for expr in self.math_expressions]
        if self.order:
            data['order_by'] = dict(self.order)
        if self.limit_count is not None:
            data['limit'] = self.limit_count
        if self.offset_count is not None:
            data['offset'] = self.offset_count
        if self.having_conditions:
            data['having'] = [
                {'field': h.field, 'operator': h.operator.value, 'value': h.value}
                for h in self.having_conditions
            ]
        return data


@dataclass
class DataPoint:
    """A single measurement sample to be written.

    Attributes:
        measurement: Measurement name
        fields: Field values keyed by field name
        tags: Tag values keyed by tag name
        timestamp: Sample time (defaults to now, UTC)
    """
    measurement: str
    fields: Dict[str, Any]
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add_tag(self, key: str, value: str) -> 'DataPoint':
        self.tags[key] = value
        return self

    def add_field(self, key: str, value: Any) -> 'DataPoint':
        self.fields[key] = value
        return self


SeriesPoint = Tuple[Union[int, str], Any]


@dataclass
class QueryResult:
    """Normalised result of a query.

    Attributes:
        series: Ordered (timestamp, value) pairs keyed by field or alias
        metadata: Free-form backend metadata
    """
    series: Dict[str, List[SeriesPoint]] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def append_point(self, timestamp: Union[int, str], name: str, value: Any) -> None:
        self.series.setdefault(name, []).append((timestamp, value))

    def add_series(self, name: str, columns: List[str], rows: List[List[Any]]) -> None:
        """Add tabular rows; every non-time column becomes '<name>.<column>'.

        Args:
            name: Series name prefix
            columns: Column names (a 'time' column supplies timestamps)
            rows: Row values in column order
        """
        time_index = columns.index('time') if 'time' in columns else None
        for row in rows:
            timestamp = row[time_index] if time_index is not None and time_index < len(row) else None
            for i, column in enumerate(columns):
                if column == 'time' or i >= len(row):
                    continue
                self.append_point(timestamp, f"{name}.{column}", row[i])

    def single_value(self, name: Optional[str] = None) -> Any:
        """Return the first value of a series (the first series by default)."""
        if not self.series:
            return None
        name = name if name is not None else next(iter(self.series))
        points = self.series.get(name) or []
        return points[0][1] if points else None

    def timestamps(self) -> List[Union[int, str]]:
        if not self.series:
            return []
        return [ts for ts, _ in next(iter(self.series.values()))]

    def is_empty(self) -> bool:
        return not self.series

    def __len__(self) -> int:
        return len(self.series)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'series': {
                name: [{'date': ts, 'value': value} for ts, value in points]
                for name, points in self.series.items()
            },
            'metadata': self.metadata,
        }
