"""
FastAPI application for the TSDB Query REST API.

Provides endpoints for:
- Listing the configured backends
- Translating a query for one backend or for every backend
- Finding RRD measurements by tag conditions
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import AppConfig
from .drivers import TimeSeriesDriver
from .exceptions import QueryError, TagResolutionError
from .models import Query
from .raw_query import RRDtoolRawQuery
from .registry import DriverRegistry, create_default_registry
from .tags import TagCondition, create_tag_strategy

logger = logging.getLogger(__name__)


# Pydantic models for API requests/responses


class TranslateRequest(BaseModel):
    """Request to translate a query."""
    backend: Optional[str] = Field(None, description="Backend name (the default backend if omitted)")
    query: Dict[str, Any] = Field(..., description="Query definition")


class TranslateResponse(BaseModel):
    """A query translated for one backend."""
    backend: str
    query: str
    args: Optional[List[str]] = None


class TranslateAllRequest(BaseModel):
    """Request to translate a query for every backend."""
    query: Dict[str, Any] = Field(..., description="Query definition")


class BackendTranslation(BaseModel):
    """Outcome of translating for one backend."""
    status: str
    query: Optional[str] = None
    args: Optional[List[str]] = None
    error: Optional[str] = None


class TranslateAllResponse(BaseModel):
    """Translations keyed by backend name."""
    translations: Dict[str, BackendTranslation]
    total_backends: int
    failed_backends: int


class BackendsResponse(BaseModel):
    """Configured backends."""
    backends: List[str]
    default: str


class TagConditionModel(BaseModel):
    """A condition on one RRD tag."""
    tag: str
    operator: str = '='
    value: Any = None
    connective: str = 'AND'


class MeasurementsRequest(BaseModel):
    """Request to find RRD measurements by tags."""
    conditions: List[TagConditionModel] = Field(default_factory=list)


class MeasurementsResponse(BaseModel):
    """RRD measurements matching the conditions."""
    measurements: List[str]
    total_count: int


def translate_definition(driver: TimeSeriesDriver, query_data: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a query definition with a driver.

    Args:
        driver: Driver whose builder performs the translation
        query_data: Query definition accepted by Query.from_dict

    Returns:
        Dictionary with the native query and, for rrdtool, its argument list

    Raises:
        QueryError: If the query is malformed or cannot be translated
        TagResolutionError: If no RRD file matches
    """
    raw = driver.translate(Query.from_dict(query_data))
    translation: Dict[str, Any] = {'query': raw.raw_query()}
    if isinstance(raw, RRDtoolRawQuery):
        translation['args'] = raw.args()
    return translation


def create_app(config: Optional[AppConfig] = None, registry: Optional[DriverRegistry] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Optional application configuration (defaults when omitted)
        registry: Optional driver registry (for testing)

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="TSDB Query API",
        description="REST API translating time series queries for InfluxDB, Prometheus, Graphite and RRDtool",
        version="1.0.0"
    )

    config = config or AppConfig()
    registry = registry or create_default_registry()

    drivers: Dict[str, TimeSeriesDriver] = {
        name: registry.create(name, config.drivers.get(name))
        for name in config.backend_names()
    }

    def get_driver(name: str) -> TimeSeriesDriver:
        if name not in drivers:
            raise HTTPException(
                status_code=404,
                detail=f"Backend '{name}' not configured"
            )
        return drivers[name]

    # API Routes

    @app.get("/api/backends", response_model=BackendsResponse)
    async def list_backends() -> BackendsResponse:
        """List configured backends.

        Returns:
            Backend names and the default backend
        """
        return BackendsResponse(backends=list(drivers), default=config.default_driver)

    @app.post("/api/translate", response_model=TranslateResponse)
    async def translate(request: TranslateRequest) -> TranslateResponse:
        """Translate a query for one backend.

        Args:
            request: Backend name and query definition

        Returns:
            The native query

        Raises:
            HTTPException: If the backend is unknown or the query cannot be translated
        """
        backend = request.backend or config.default_driver
        driver = get_driver(backend)

        try:
            translation = translate_definition(driver, request.query)
        except (QueryError, TagResolutionError) as e:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot translate query for {backend}: {str(e)}"
            )

        return TranslateResponse(backend=backend, **translation)

    @app.post("/api/translate/all", response_model=TranslateAllResponse)
    async def translate_all(request: TranslateAllRequest) -> TranslateAllResponse:
        """Translate a query for every configured backend.

        A backend that cannot translate the query is reported with its
        error; the others are still translated.

        Args:
            request: Query definition

        Returns:
            TranslateAllResponse with one entry per backend
        """
        translations: Dict[str, BackendTranslation] = {}
        failed = 0

        for name, driver in drivers.items():
            try:
                translations[name] = BackendTranslation(status="success", **translate_definition(driver, request.query))
            except (QueryError, TagResolutionError) as e:
                failed += 1
                logger.info("Translation for %s failed: %s", name, e)
                translations[name] = BackendTranslation(status="error", error=str(e))

        return TranslateAllResponse(
            translations=translations,
            total_backends=len(drivers),
            failed_backends=failed
        )

    @app.post("/api/rrd/measurements", response_model=MeasurementsResponse)
    async def find_measurements(request: MeasurementsRequest) -> MeasurementsResponse:
        """Find RRD measurements having files that match tag conditions.

        Args:
            request: Tag conditions, evaluated left to right

        Returns:
            Matching measurement names

        Raises:
            HTTPException: If the conditions cannot be evaluated
        """
        rrd_config = registry.create_config('rrdtool', config.drivers.get('rrdtool'))
        conditions = [
            TagCondition(c.tag, c.operator, c.value, c.connective)
            for c in request.conditions
        ]

        try:
            strategy = create_tag_strategy(rrd_config.tag_strategy, rrd_config.base_dir, rrd_config.folder_tags)
            measurements = strategy.find_measurements_by_tags(conditions)
        except TagResolutionError as e:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot search RRD tags: {str(e)}"
            )

        return MeasurementsResponse(measurements=measurements, total_count=len(measurements))

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health check endpoint.

        Returns:
            Health status
        """
        return {"status": "healthy"}

    return app


# Create the app instance
app = create_app()
