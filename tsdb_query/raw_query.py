"""
Native queries produced by the builders.

A RawQuery is handed to a driver's transport unchanged. Each backend has
its own variant carrying the metadata its transport needs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

from .exceptions import RawQueryError


class RawQuery(ABC):
    """Base class for native queries."""

    @abstractmethod
    def raw_query(self) -> str:
        """Return the query text as sent to the backend."""

    def __str__(self) -> str:
        return self.raw_query()


@dataclass(frozen=True)
class InfluxDBRawQuery(RawQuery):
    """A Flux (or InfluxQL) script."""
    query: str
    is_flux: bool = True

    def raw_query(self) -> str:
        return self.query


@dataclass(frozen=True)
class PrometheusRawQuery(RawQuery):
    """A PromQL expression with optional trailing metadata comments.

    The comments ('# limit: 10', '# time range: A to B',
    '# relative time: 1h') are read by the transport to build request
    parameters; they are not part of the expression itself.
    """
    query: str

    def raw_query(self) -> str:
        return self.query

    @property
    def expression(self) -> str:
        return self.query.split(' # ', 1)[0]

    @property
    def comments(self) -> Dict[str, str]:
        parts = self.query.split(' # ')[1:]
        comments = {}
        for part in parts:
            key, _, value = part.partition(': ')
            comments[key] = value
        return comments


@dataclass(frozen=True)
class GraphiteRawQuery(RawQuery):
    """A form-encoded render API query string."""
    query: str

    def raw_query(self) -> str:
        return self.query

    @property
    def params(self) -> Dict[str, str]:
        return dict(parse_qsl(self.query, keep_blank_values=True))


def shell_quote(arg: str) -> str:
    """Quote an argument for a POSIX shell, always using single quotes."""
    return "'" + arg.replace("'", "'\\''") + "'"


def escape_legend(text: str) -> str:
    """Escape characters with special meaning in rrdtool legends."""
    return text.replace('\\', '\\\\').replace(':', '\\:')


@dataclass
class RRDtoolRawQuery(RawQuery):
    """An rrdtool command line.

    Parameters are kept in insertion order and always precede the data
    definitions. Statements are emitted as all DEFs, then all CDEF/VDEF
    calculations in the order they were added, then all XPORTs, since
    rrdtool requires a name to be defined before it is used.

    Attributes:
        command: rrdtool sub-command (xport, graph, fetch, ...)
        output_path: Optional file argument placed before the parameters
        params: Ordered (flag, value) pairs; value None means a bare flag
        defs: DEF statements
        calculations: CDEF and VDEF statements
        xports: XPORT statements
    """
    command: str = 'xport'
    output_path: Optional[str] = None
    params: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    defs: List[str] = field(default_factory=list)
    calculations: List[str] = field(default_factory=list)
    xports: List[str] = field(default_factory=list)
    _frozen: bool = field(default=False, repr=False, compare=False)

    def __post_init__(self):
        if self.command == 'xport' and not self.params:
            self.params.append(('--json', None))

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RawQueryError("RRDtool query is already built")

    def param(self, flag: str, value: Optional[str] = None) -> 'RRDtoolRawQuery':
        self._check_mutable()
        self.params.append((flag, value))
        return self

    def get_param(self, flag: str) -> Optional[str]:
        for name, value in self.params:
            if name == flag:
                return value
        return None

    def define(self, name: str, path: str, data_source: str, cf: str = 'AVERAGE') -> 'RRDtoolRawQuery':
        self._check_mutable()
        path = path.replace(':', '\\:')
        self.defs.append(f"DEF:{name}={path}:{data_source}:{cf}")
        return self

    def cdef(self, name: str, expression: str) -> 'RRDtoolRawQuery':
        self._check_mutable()
        self.calculations.append(f"CDEF:{name}={expression}")
        return self

    def vdef(self, name: str, expression: str) -> 'RRDtoolRawQuery':
        self._check_mutable()
        self.calculations.append(f"VDEF:{name}={expression}")
        return self

    def xport(self, name: str, legend: str = '') -> 'RRDtoolRawQuery':
        self._check_mutable()
        statement = f"XPORT:{name}"
        if legend:
            statement += f":{escape_legend(legend)}"
        self.xports.append(statement)
        return self

    def freeze(self) -> 'RRDtoolRawQuery':
        self._frozen = True
        return self

    def args(self) -> List[str]:
        """Return the command arguments in execution order."""
        args = [self.output_path] if self.output_path else []
        for flag, value in self.params:
            args.append(flag)
            if value is not None:
                args.append(value)
        return args + self.defs + self.calculations + self.xports

    def raw_query(self) -> str:
        return ' '.join(shell_quote(arg) for arg in [self.command] + self.args())
