"""
Driver registry.

Maps a driver name to a factory and the pydantic model holding the
driver's settings. A registry is an ordinary value: build one at startup
with create_default_registry() and pass it to whatever creates drivers.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from .aggregate import AggregateDriver
from .builders import BUILDER_BACKENDS, create_builder
from .config import (
    AggregateConfig,
    GraphiteConfig,
    InfluxDBConfig,
    NullConfig,
    PrometheusConfig,
    RRDtoolConfig,
)
from .drivers import BuilderDriver, NullDriver, TimeSeriesDriver, Transport
from .exceptions import ConfigurationError, DriverError

logger = logging.getLogger(__name__)

DriverFactory = Callable[[Any, Optional[Transport]], TimeSeriesDriver]

BUILDER_CONFIGS: Dict[str, Type[BaseModel]] = {
    'influxdb': InfluxDBConfig,
    'prometheus': PrometheusConfig,
    'graphite': GraphiteConfig,
    'rrdtool': RRDtoolConfig,
}


class DriverRegistry:
    """Named driver factories with their configuration models."""

    def __init__(self):
        self._drivers: Dict[str, Tuple[DriverFactory, Type[BaseModel]]] = {}

    def register(self, name: str, factory: DriverFactory, config_class: Type[BaseModel]) -> None:
        """Register a driver, replacing any driver of the same name.

        Args:
            name: Driver name
            factory: Callable (config, transport) returning a driver
            config_class: pydantic model validating the driver's settings
        """
        self._drivers[name] = (factory, config_class)
        logger.debug("Registered driver '%s'", name)

    def unregister(self, name: str) -> None:
        self._entry(name)
        del self._drivers[name]
        logger.debug("Unregistered driver '%s'", name)

    def has(self, name: str) -> bool:
        return name in self._drivers

    def names(self) -> List[str]:
        return list(self._drivers)

    def _entry(self, name: str) -> Tuple[DriverFactory, Type[BaseModel]]:
        if name not in self._drivers:
            raise DriverError(f"Driver '{name}' is not registered")
        return self._drivers[name]

    def config_class(self, name: str) -> Type[BaseModel]:
        return self._entry(name)[1]

    def create_config(self, name: str, config: Union[Mapping[str, Any], BaseModel, None] = None) -> BaseModel:
        """Validate settings for a driver.

        Args:
            name: Driver name
            config: Settings mapping, an already built model, or None for defaults

        Returns:
            The driver's config model

        Raises:
            DriverError: If the driver is not registered
            ConfigurationError: If the settings are invalid
        """
        config_class = self.config_class(name)
        if isinstance(config, config_class):
            return config
        if isinstance(config, BaseModel):
            config = config.model_dump()
        try:
            return config_class.model_validate(dict(config or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration for driver '{name}': {e}") from e

    def create(
        self,
        name: str,
        config: Union[Mapping[str, Any], BaseModel, None] = None,
        transport: Optional[Transport] = None,
    ) -> TimeSeriesDriver:
        """Create a driver by name.

        Args:
            name: Driver name
            config: Driver settings
            transport: Transport for the driver (NullTransport when omitted)

        Returns:
            New, unconnected driver
        """
        factory, _ = self._entry(name)
        driver = factory(self.create_config(name, config), transport)
        logger.debug("Created driver '%s'", name)
        return driver


def _builder_factory(name: str) -> DriverFactory:
    def factory(config: Any, transport: Optional[Transport]) -> TimeSeriesDriver:
        return BuilderDriver(name, create_builder(name, config), transport)
    return factory


def create_default_registry() -> DriverRegistry:
    """Create a registry holding every built-in driver."""
    registry = DriverRegistry()

    for backend in BUILDER_BACKENDS:
        registry.register(backend, _builder_factory(backend), BUILDER_CONFIGS[backend])

    registry.register('null', lambda config, transport: NullDriver(), NullConfig)

    def aggregate_factory(config: AggregateConfig, transport: Optional[Transport]) -> TimeSeriesDriver:
        write_databases = [
            registry.create(entry.driver, entry.config, transport)
            for entry in config.write_databases
        ]
        read_database = None
        if config.read_database is not None:
            read_database = registry.create(config.read_database.driver, config.read_database.config, transport)
        return AggregateDriver(write_databases, read_database)

    registry.register('aggregate', aggregate_factory, AggregateConfig)
    return registry
