"""
RRDtool query builder.

rrdtool xport works on named virtual data sources: DEF reads a data
source from a file, CDEF computes a new series with an RPN expression,
VDEF reduces a series to a single value and XPORT selects what is
returned. Names must be defined before they are referenced, so every
built command lists its DEFs, then its CDEF/VDEFs, then its XPORTs.
"""

from typing import Dict, List, Tuple

from ..exceptions import QueryError, TagResolutionError
from ..models import Aggregation, ComparisonOperator, Query
from ..raw_query import RRDtoolRawQuery
from ..tags import TagCondition, TagStrategy
from ..timeutils import epoch, format_number, interval_to_seconds
from .base import QueryBuilder
from .rpn import infix_to_rpn

DEFAULT_FIELD = 'value'
CONSOLIDATION_FUNCTION = 'AVERAGE'

# Aggregations combining exactly two DEFs
PAIRWISE_TEMPLATES = {
    'sum': '{a},{b},+',
    'avg': '{a},{b},+,2,/',
    'mean': '{a},{b},+,2,/',
    'min': '{a},{b},MIN',
    'max': '{a},{b},MAX',
    'count': '{a},UN,0,1,IF,{b},UN,0,1,IF,+',
}

# Aggregations reducing one DEF to a single value
REDUCER_TEMPLATES = {
    'first': '{a},FIRST',
    'last': '{a},LAST',
    'stddev': '{a},STDEV',
}


class VariableAllocator:
    """Hands out rrdtool variable names per category.

    Data sources are numbered v1, v2, ...; aggregations agg1000, ...;
    math expressions math2000, ... The ranges are disjoint so names never
    collide however many of each a query uses.
    """

    DEF_START = 1
    AGGREGATE_START = 1000
    MATH_START = 2000

    def __init__(self):
        self._next = {
            'v': self.DEF_START,
            'agg': self.AGGREGATE_START,
            'math': self.MATH_START,
        }

    def _allocate(self, prefix: str) -> str:
        name = f'{prefix}{self._next[prefix]}'
        self._next[prefix] += 1
        return name

    def data_source(self) -> str:
        return self._allocate('v')

    def aggregate(self) -> str:
        return self._allocate('agg')

    def math(self) -> str:
        return self._allocate('math')


class RRDtoolQueryBuilder(QueryBuilder):
    """Builds rrdtool xport commands."""

    backend = 'rrdtool'
    supported_functions = frozenset(PAIRWISE_TEMPLATES) | frozenset(REDUCER_TEMPLATES) | {'percentile'}

    def __init__(self, tag_strategy: TagStrategy, default_step: int = 300):
        """Initialize the builder.

        Args:
            tag_strategy: Strategy used to find the RRD file for a query
            default_step: Step in seconds when the interval is empty
        """
        super().__init__()
        self.tag_strategy = tag_strategy
        self.default_step = default_step

    def build(self, query: Query) -> RRDtoolRawQuery:
        self._check_query(query)

        raw = RRDtoolRawQuery('xport')
        allocator = VariableAllocator()

        self._add_time_params(raw, query)
        path = self._resolve_path(query)

        fields = [DEFAULT_FIELD] if query.selects_all_fields() else list(query.fields)
        def_names: List[str] = []
        sources: Dict[str, str] = {}
        for name in fields:
            variable = allocator.data_source()
            raw.define(variable, path, name, CONSOLIDATION_FUNCTION)
            def_names.append(variable)
            sources.setdefault(name, variable)

        exports: List[Tuple[str, str]] = []
        for aggregation in query.aggregations:
            variable = allocator.aggregate()
            self._add_aggregation(raw, variable, aggregation, def_names, sources)
            exports.append((variable, aggregation.output_name))

        for expr in query.math_expressions:
            variable = allocator.math()
            raw.cdef(variable, infix_to_rpn(expr.expression, sources))
            exports.append((variable, expr.alias))

        if not exports:
            exports = list(zip(def_names, fields))

        for variable, legend in exports:
            raw.xport(variable, legend)

        for clause, present in (
            ('group by', bool(query.group_by_tags)),
            ('order by', bool(query.order)),
            ('limit', query.limit_count is not None),
            ('offset', query.offset_count is not None),
            ('distinct', query.distinct),
            ('timezone', bool(query.timezone_name)),
        ):
            if present:
                self._skip(clause)

        raw.freeze()
        self.logger.debug("Built rrdtool command: %s", raw.raw_query())
        return raw

    def _add_time_params(self, raw: RRDtoolRawQuery, query: Query) -> None:
        if query.relative_time is not None:
            raw.param('--start', f'end-{query.relative_time.total_seconds()}s')
        elif query.start_time is not None:
            raw.param('--start', str(epoch(query.start_time)))
        else:
            raw.param('--start', 'end-1h')

        if query.end_time is not None:
            raw.param('--end', str(epoch(query.end_time)))

        if query.has_time_grouping():
            step = interval_to_seconds(query.interval) if query.interval else self.default_step
            raw.param('--step', str(step))

    def _resolve_path(self, query: Query) -> str:
        """Find the RRD file through the tag strategy.

        Only equality and IN conditions take part in file selection.

        Raises:
            TagResolutionError: If no file matches
        """
        conditions = [
            TagCondition(c.field, c.operator.value, c.value, c.connective)
            for c in query.conditions
            if c.operator.is_equality or c.operator is ComparisonOperator.IN
        ]
        paths = self.tag_strategy.resolve_file_paths(query.measurement, conditions, exact=True)
        if not paths:
            raise TagResolutionError(f"No RRD file found for measurement '{query.measurement}'")
        if len(paths) > 1:
            self.logger.warning(
                "%d RRD files match measurement '%s', using %s",
                len(paths), query.measurement, paths[0],
            )
        return paths[0]

    def _add_aggregation(
        self,
        raw: RRDtoolRawQuery,
        variable: str,
        aggregation: Aggregation,
        defs: List[str],
        sources: Dict[str, str],
    ) -> None:
        function = aggregation.function

        if function in PAIRWISE_TEMPLATES:
            if len(defs) != 2:
                raise QueryError(
                    f"RRDtool {function} aggregation combines exactly two data sources, "
                    f"query defines {len(defs)}"
                )
            raw.cdef(variable, PAIRWISE_TEMPLATES[function].format(a=defs[0], b=defs[1]))
            return

        source = sources.get(aggregation.field or '', defs[0])
        if function == 'percentile':
            raw.vdef(variable, f'{source},{format_number(aggregation.percentile)},PERCENT')
        else:
            raw.vdef(variable, REDUCER_TEMPLATES[function].format(a=source))
