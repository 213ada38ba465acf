"""
Fan-out driver writing to several backends and reading from one.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Type

from .drivers import TimeSeriesDriver
from .exceptions import DatabaseError, DriverConnectionError, DriverError, WriteError
from .models import DataPoint, Query, QueryResult
from .raw_query import RawQuery

logger = logging.getLogger(__name__)


class AggregateDriver(TimeSeriesDriver):
    """Composes several write backends and one read backend.

    Writes and database management operations go to every write backend
    in order. A backend fails by raising or by returning False. Failures
    are logged per backend; the operation raises only when every backend
    failed with the same message, and otherwise returns False if any
    backend failed. Reads go to the read backend only.
    """

    name = 'aggregate'

    def __init__(
        self,
        write_databases: List[TimeSeriesDriver],
        read_database: Optional[TimeSeriesDriver] = None,
    ):
        """Initialize the driver.

        Args:
            write_databases: Backends receiving every write
            read_database: Backend serving reads (the first write backend if None)

        Raises:
            DriverConnectionError: If there is no write backend
        """
        super().__init__()
        if not write_databases:
            raise DriverConnectionError('No databases available for reading')
        self.write_databases = list(write_databases)
        self.read_database = read_database if read_database is not None else self.write_databases[0]

    def _fan_out(
        self,
        operation: str,
        call: Callable[[TimeSeriesDriver], bool],
        error_class: Type[DriverError],
    ) -> bool:
        errors: Dict[int, str] = {}
        for index, db in enumerate(self.write_databases):
            try:
                if not call(db):
                    errors[index] = f"{operation} failed for database at index {index}"
            except Exception as e:
                errors[index] = str(e)
            if index in errors:
                logger.error("%s failed on write database %d (%s): %s", operation, index, db.name, errors[index])

        if len(errors) == len(self.write_databases) and len(set(errors.values())) == 1:
            raise error_class(errors[0])
        return not errors

    def connect(self) -> bool:
        for index, db in enumerate(self.write_databases):
            try:
                db.connect()
            except DriverError as e:
                logger.error("Failed to connect to write database %d (%s): %s", index, db.name, e)
                raise DriverConnectionError(f"Failed to connect to write database: {e}") from e
            logger.info("Connected to write database %d (%s)", index, db.name)

        if self.read_database not in self.write_databases:
            try:
                self.read_database.connect()
            except DriverError as e:
                logger.error("Failed to connect to read database (%s): %s", self.read_database.name, e)
                raise DriverConnectionError(f"Failed to connect to read database: {e}") from e
            logger.info("Connected to read database (%s)", self.read_database.name)
        else:
            logger.info("Using write database %s for reading", self.read_database.name)

        self._connected = True
        return True

    def write(self, point: DataPoint) -> bool:
        return self._fan_out('Write', lambda db: db.write(point), WriteError)

    def write_batch(self, points: List[DataPoint]) -> bool:
        return self._fan_out('Batch write', lambda db: db.write_batch(points), WriteError)

    def create_database(self, database: str) -> bool:
        return self._fan_out('Create database', lambda db: db.create_database(database), DatabaseError)

    def delete_database(self, database: str) -> bool:
        return self._fan_out('Delete database', lambda db: db.delete_database(database), DatabaseError)

    def delete_measurement(
        self,
        measurement: str,
        start: Optional[datetime] = None,
        stop: Optional[datetime] = None,
    ) -> bool:
        return self._fan_out(
            'Delete measurement',
            lambda db: db.delete_measurement(measurement, start, stop),
            DatabaseError,
        )

    def translate(self, query: Query) -> RawQuery:
        return self.read_database.translate(query)

    def query(self, query: Query) -> QueryResult:
        return self.read_database.query(query)

    def raw_query(self, raw_query: RawQuery) -> QueryResult:
        return self.read_database.raw_query(raw_query)

    def get_databases(self) -> List[str]:
        return self.read_database.get_databases()

    def close(self) -> None:
        closed: List[TimeSeriesDriver] = []
        for db in self.write_databases + [self.read_database]:
            if any(db is other for other in closed):
                continue
            db.close()
            closed.append(db)
        self._connected = False
