"""
Configuration for drivers and the application.

Each driver has a pydantic model holding its connection and translation
settings. The application configuration is read from a YAML file with a
top-level mapping like:

    default_driver: influxdb
    drivers:
      influxdb:
        url: http://localhost:8086
        bucket: metrics
      rrdtool:
        rrd_dir: /var/lib/rrd/
        tag_strategy: folder
        folder_tags: [region, host]
    logging:
      level: INFO
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULT_ARCHIVES = [
    'RRA:AVERAGE:0.5:1:2016',
    'RRA:AVERAGE:0.5:12:1488',
    'RRA:AVERAGE:0.5:288:366',
    'RRA:MAX:0.5:1:2016',
    'RRA:MAX:0.5:12:1488',
    'RRA:MIN:0.5:1:2016',
    'RRA:MIN:0.5:12:1488',
]


class InfluxDBConfig(BaseModel):
    """InfluxDB 2.x connection settings."""
    url: str = 'http://localhost:8086'
    token: str = ''
    org: str = ''
    bucket: str = ''
    timeout: int = Field(30, ge=1)
    verify_ssl: bool = True
    debug: bool = False
    precision: Literal['ns', 'us', 'ms', 's'] = 'ns'


class PrometheusConfig(BaseModel):
    """Prometheus HTTP API settings."""
    url: str = 'http://localhost:9090'
    timeout: int = Field(30, ge=1)
    verify_ssl: bool = True
    debug: bool = False


class GraphiteConfig(BaseModel):
    """Graphite carbon (write) and render API (read) settings."""
    host: str = 'localhost'
    port: int = Field(2003, ge=1, le=65535)
    protocol: Literal['tcp', 'udp'] = 'tcp'
    timeout: int = Field(30, ge=1)
    prefix: str = ''
    batch_size: int = Field(500, ge=1)
    web_host: str = 'localhost'
    web_port: int = Field(8080, ge=1, le=65535)
    web_protocol: Literal['http', 'https'] = 'http'
    web_path: str = '/render'


class RRDtoolConfig(BaseModel):
    """rrdtool settings, including how tags map onto RRD files."""
    rrdtool_path: str = Field('rrdtool', min_length=1)
    rrd_dir: str = Field('/tmp/rrd', min_length=1)
    use_rrdcached: bool = False
    rrdcached_address: str = ''
    persistent_process: bool = True
    command_timeout: int = Field(180, ge=1)
    default_step: int = Field(300, gt=0)
    debug: bool = False
    tag_strategy: Literal['filename', 'folder', 'none'] = 'filename'
    folder_tags: List[str] = Field(default_factory=list)
    default_archives: List[str] = Field(default_factory=lambda: list(DEFAULT_ARCHIVES), min_length=1)

    @model_validator(mode='after')
    def check_rrdcached(self) -> 'RRDtoolConfig':
        if self.use_rrdcached and not self.rrdcached_address:
            raise ValueError('rrdcached_address is required when use_rrdcached is enabled')
        return self

    @property
    def base_dir(self) -> str:
        """rrd_dir with a trailing slash."""
        return self.rrd_dir if self.rrd_dir.endswith('/') else self.rrd_dir + '/'


class NullConfig(BaseModel):
    """The null driver takes no settings."""


class DriverEntry(BaseModel):
    """A backend of the aggregate driver."""
    driver: str
    config: Dict[str, Any] = Field(default_factory=dict)


class AggregateConfig(BaseModel):
    """Fan-out driver settings.

    Attributes:
        write_databases: Backends every write goes to
        read_database: Backend reads go to (the first write backend if unset)
    """
    write_databases: List[DriverEntry] = Field(default_factory=list)
    read_database: Optional[DriverEntry] = None


class LoggingConfig(BaseModel):
    """Logging settings."""
    level: str = 'INFO'
    format: str = LOG_FORMAT

    @field_validator('level')
    @classmethod
    def check_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Invalid log level: {value}")
        return level


class AppConfig(BaseModel):
    """Top-level application configuration.

    Attributes:
        default_driver: Backend used when a request names none
        drivers: Settings per configured backend, keyed by driver name
        logging: Logging settings
    """
    default_driver: str = 'influxdb'
    drivers: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def backend_names(self) -> List[str]:
        """Configured backends, or the four query backends when none are configured."""
        if self.drivers:
            return list(self.drivers)
        return ['influxdb', 'prometheus', 'graphite', 'rrdtool']


def load_config(path: str) -> AppConfig:
    """Load the application configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated AppConfig (defaults for an empty file)

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    logging.getLogger(__name__).info("Loaded configuration from %s", path)
    return config


def setup_logging(level: str = 'INFO', debug: bool = False, fmt: str = LOG_FORMAT) -> None:
    """Configure the root logger.

    Args:
        level: Log level name
        debug: Force DEBUG level
        fmt: Log record format
    """
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format=fmt, force=True)
