"""
Error taxonomy for the TSDB query library.

Translation-time problems (malformed queries, unsupported aggregation
functions) raise QueryError. Tag encoding and tag search problems raise
TagResolutionError. Driver-level failures derive from DriverError.
"""


class TSDBError(Exception):
    """Base class for all library errors."""


class QueryError(TSDBError, ValueError):
    """A query cannot be translated for the requested backend."""


class TagResolutionError(TSDBError):
    """Tag encoding, decoding or search failed."""


class ConfigurationError(TSDBError):
    """Configuration could not be loaded or validated."""


class DriverError(TSDBError):
    """Base class for driver failures."""


class DriverConnectionError(DriverError):
    """A driver (or one of its backends) could not be connected."""


class WriteError(DriverError):
    """Writing data points failed."""


class DatabaseError(DriverError):
    """A database management operation failed."""


class RawQueryError(DriverError):
    """A native query could not be executed."""
