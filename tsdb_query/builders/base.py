"""
Common behaviour of the backend query builders.
"""

import logging
from abc import ABC, abstractmethod
from typing import FrozenSet

from ..exceptions import QueryError
from ..models import AGGREGATE_FUNCTIONS, Aggregation, Query
from ..raw_query import RawQuery


class QueryBuilder(ABC):
    """Lowers a Query into a backend's native RawQuery."""

    backend = ''
    supported_functions: FrozenSet[str] = frozenset(AGGREGATE_FUNCTIONS)

    def __init__(self):
        self.logger = logging.getLogger(f"tsdb_query.builders.{self.backend or 'base'}")

    @abstractmethod
    def build(self, query: Query) -> RawQuery:
        """Translate a query.

        Args:
            query: The query to translate

        Returns:
            The backend-specific RawQuery

        Raises:
            QueryError: If the query cannot be translated
        """

    def _check_query(self, query: Query) -> None:
        if not query.measurement:
            raise QueryError('Measurement is required')
        for aggregation in query.aggregations:
            self._check_aggregation(aggregation)

    def _check_aggregation(self, aggregation: Aggregation) -> None:
        if aggregation.function not in self.supported_functions:
            raise QueryError(
                f"Unsupported aggregation function for {self.backend}: {aggregation.function}"
            )
        if aggregation.function == 'percentile':
            rank = aggregation.percentile
            if isinstance(rank, bool) or not isinstance(rank, (int, float)):
                raise QueryError('Percentile aggregation requires a numeric rank')
            if not 0 <= rank <= 100:
                raise QueryError(f"Percentile rank must be between 0 and 100, got {rank}")

    def _skip(self, clause: str) -> None:
        self.logger.debug("%s has no %s representation, clause omitted", clause, self.backend)
