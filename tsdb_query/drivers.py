"""
Time series drivers.

A driver combines a query builder with a transport: the builder lowers a
Query into the backend's native RawQuery and the transport executes it.
Transports own all protocol I/O (HTTP requests, carbon sockets, rrdtool
processes) and are supplied by the caller; NullTransport records what it
is given and is used for dry runs and tests.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .builders import QueryBuilder
from .exceptions import DatabaseError, DriverConnectionError, DriverError, QueryError, RawQueryError, WriteError
from .models import DataPoint, Query, QueryResult
from .raw_query import RawQuery


class Transport(Protocol):
    """Executes native queries and writes against a live backend."""

    def connect(self) -> bool:
        ...

    def execute(self, raw_query: RawQuery) -> QueryResult:
        ...

    def write(self, points: List[DataPoint]) -> bool:
        ...

    def command(self, operation: str, **params: Any) -> bool:
        ...

    def list_databases(self) -> List[str]:
        ...

    def close(self) -> None:
        ...


class NullTransport:
    """Transport that records everything and talks to nothing.

    Attributes:
        queries: Native queries received by execute()
        points: Data points received by write()
        commands: (operation, params) pairs received by command()
        databases: Database names created and not yet deleted
    """

    def __init__(self):
        self.queries: List[RawQuery] = []
        self.points: List[DataPoint] = []
        self.commands: List[Tuple[str, Dict[str, Any]]] = []
        self.databases: List[str] = []
        self.connected = False

    def connect(self) -> bool:
        self.connected = True
        return True

    def execute(self, raw_query: RawQuery) -> QueryResult:
        self.queries.append(raw_query)
        return QueryResult(metadata={'raw_query': raw_query.raw_query()})

    def write(self, points: List[DataPoint]) -> bool:
        self.points.extend(points)
        return True

    def command(self, operation: str, **params: Any) -> bool:
        self.commands.append((operation, params))
        database = params.get('database')
        if operation == 'create_database' and database not in self.databases:
            self.databases.append(database)
        elif operation == 'delete_database' and database in self.databases:
            self.databases.remove(database)
        return True

    def list_databases(self) -> List[str]:
        return list(self.databases)

    def close(self) -> None:
        self.connected = False


class TimeSeriesDriver(ABC):
    """Common interface of all drivers."""

    name = ''

    def __init__(self):
        self._connected = False
        self.logger = logging.getLogger(f"tsdb_query.drivers.{self.name or 'base'}")

    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    def connect(self) -> bool:
        """Open the connection to the backend."""

    @abstractmethod
    def write(self, point: DataPoint) -> bool:
        """Write one data point."""

    def write_batch(self, points: List[DataPoint]) -> bool:
        """Write several data points.

        Returns:
            True when every point was written

        Raises:
            WriteError: If every point failed with the same error
        """
        if not points:
            self.logger.debug("Skipping empty batch write")
            return True

        success = True
        errors: Dict[int, str] = {}
        for index, point in enumerate(points):
            try:
                if not self.write(point):
                    success = False
                    errors[index] = f"Write failed for data point at index {index}"
                    self.logger.warning("Write failed for data point %d (%s)", index, point.measurement)
            except DriverError as e:
                success = False
                errors[index] = str(e)
                self.logger.error("Exception writing data point %d (%s): %s", index, point.measurement, e)

        if len(errors) == len(points) and len(set(errors.values())) == 1:
            raise WriteError(next(iter(errors.values())))
        return success

    def translate(self, query: Query) -> RawQuery:
        """Lower a query to this driver's native query.

        Raises:
            QueryError: If the driver has no native query language
        """
        raise QueryError(f"Driver '{self.name}' has no native query language")

    @abstractmethod
    def query(self, query: Query) -> QueryResult:
        """Translate and execute a query."""

    @abstractmethod
    def raw_query(self, raw_query: RawQuery) -> QueryResult:
        """Execute a native query."""

    @abstractmethod
    def create_database(self, database: str) -> bool:
        """Create a database (bucket, directory, ...)."""

    @abstractmethod
    def get_databases(self) -> List[str]:
        """List databases."""

    @abstractmethod
    def delete_database(self, database: str) -> bool:
        """Delete a database."""

    @abstractmethod
    def delete_measurement(
        self,
        measurement: str,
        start: Optional[datetime] = None,
        stop: Optional[datetime] = None,
    ) -> bool:
        """Delete a measurement, optionally only between start and stop."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""


class BuilderDriver(TimeSeriesDriver):
    """Driver translating queries with a builder and running them on a transport."""

    def __init__(self, name: str, builder: QueryBuilder, transport: Optional[Transport] = None):
        """Initialize the driver.

        Args:
            name: Driver name, used in logs and errors
            builder: Query builder for the backend
            transport: Transport executing native queries (NullTransport by default)
        """
        self.name = name
        super().__init__()
        self.builder = builder
        self.transport = transport if transport is not None else NullTransport()

    def connect(self) -> bool:
        self.logger.info("Connecting to %s", self.name)
        try:
            self._connected = bool(self.transport.connect())
        except OSError as e:
            raise DriverConnectionError(f"Failed to connect to {self.name}: {e}") from e
        return self._connected

    def _require_connection(self) -> None:
        if not self._connected:
            raise DriverConnectionError(f"Driver '{self.name}' is not connected")

    def write(self, point: DataPoint) -> bool:
        self._require_connection()
        return self.transport.write([point])

    def translate(self, query: Query) -> RawQuery:
        return self.builder.build(query)

    def query(self, query: Query) -> QueryResult:
        self.logger.debug(
            "Executing query on %s: measurement=%s fields=%s",
            self.name, query.measurement, query.fields,
        )
        result = self.raw_query(self.translate(query))
        self.logger.debug("Query returned %d series", len(result))
        return result

    def raw_query(self, raw_query: RawQuery) -> QueryResult:
        self._require_connection()
        try:
            return self.transport.execute(raw_query)
        except OSError as e:
            raise RawQueryError(f"Query failed on {self.name}: {e}") from e

    def create_database(self, database: str) -> bool:
        self._require_connection()
        return self.transport.command('create_database', database=database)

    def get_databases(self) -> List[str]:
        self._require_connection()
        return self.transport.list_databases()

    def delete_database(self, database: str) -> bool:
        self._require_connection()
        return self.transport.command('delete_database', database=database)

    def delete_measurement(
        self,
        measurement: str,
        start: Optional[datetime] = None,
        stop: Optional[datetime] = None,
    ) -> bool:
        self._require_connection()
        if start is not None and stop is not None and start > stop:
            raise DatabaseError("Start time must be before stop time")
        return self.transport.command('delete_measurement', measurement=measurement, start=start, stop=stop)

    def close(self) -> None:
        if self._connected:
            self.transport.close()
            self._connected = False
            self.logger.info("Closed connection to %s", self.name)


class NullDriver(TimeSeriesDriver):
    """Driver that accepts everything and stores nothing."""

    name = 'null'

    def connect(self) -> bool:
        self._connected = True
        return True

    def write(self, point: DataPoint) -> bool:
        return True

    def query(self, query: Query) -> QueryResult:
        return QueryResult()

    def raw_query(self, raw_query: RawQuery) -> QueryResult:
        return QueryResult()

    def create_database(self, database: str) -> bool:
        return True

    def get_databases(self) -> List[str]:
        return []

    def delete_database(self, database: str) -> bool:
        return True

    def delete_measurement(
        self,
        measurement: str,
        start: Optional[datetime] = None,
        stop: Optional[datetime] = None,
    ) -> bool:
        return True

    def close(self) -> None:
        self._connected = False
