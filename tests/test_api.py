"""
Tests for the TSDB Query REST API.

Tests all API endpoints with FastAPI TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from tsdb_query import AppConfig
from tsdb_query.api import create_app
from tsdb_query.tags import encode_filename

QUERY = {
    'measurement': 'cpu_usage',
    'conditions': [{'field': 'host', 'operator': '=', 'value': 'server1'}],
    'start': '2023-05-28T23:00:00Z',
    'end': '2023-05-28T23:29:00Z',
}


@pytest.fixture
def rrd_dir(tmp_path):
    """Directory holding tag-encoded RRD files."""
    for measurement, tags in (
        ('cpu_usage', {'host': 'server1'}),
        ('cpu_usage', {'host': 'server2'}),
        ('mem', {'host': 'server1', 'env': 'prod'}),
    ):
        (tmp_path / encode_filename(measurement, tags)).write_bytes(b'')
    return tmp_path


@pytest.fixture
def config(rrd_dir):
    """Application config with all four backends."""
    return AppConfig(
        default_driver='prometheus',
        drivers={
            'influxdb': {'bucket': 'test_bucket'},
            'prometheus': {},
            'graphite': {'prefix': 'servers'},
            'rrdtool': {'rrd_dir': str(rrd_dir)},
        },
    )


@pytest.fixture
def client(config):
    """Create test client."""
    app = create_app(config=config)
    return TestClient(app)


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_check(self, client):
        """Test health check returns healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestBackendsEndpoint:
    """Test backend listing."""

    def test_list_configured_backends(self, client):
        """Test configured backends and the default."""
        response = client.get("/api/backends")
        assert response.status_code == 200
        data = response.json()
        assert data["backends"] == ["influxdb", "prometheus", "graphite", "rrdtool"]
        assert data["default"] == "prometheus"

    def test_default_app(self):
        """Test an app without configuration serves every query backend."""
        client = TestClient(create_app())
        data = client.get("/api/backends").json()
        assert data["backends"] == ["influxdb", "prometheus", "graphite", "rrdtool"]
        assert data["default"] == "influxdb"


class TestTranslateEndpoint:
    """Test single-backend translation."""

    def test_translate_influxdb(self, client):
        """Test Flux translation."""
        response = client.post("/api/translate", json={"backend": "influxdb", "query": QUERY})
        assert response.status_code == 200
        data = response.json()
        assert data["backend"] == "influxdb"
        assert data["query"] == (
            'from(bucket: "test_bucket")\n'
            '  |> range(start: 2023-05-28T23:00:00+00:00, stop: 2023-05-28T23:29:00+00:00)\n'
            '  |> filter(fn: (r) => r._measurement == "cpu_usage")\n'
            '  |> filter(fn: (r) => r["host"] == "server1")'
        )
        assert data["args"] is None

    def test_translate_default_backend(self, client):
        """Test the default backend is used when none is named."""
        response = client.post("/api/translate", json={"query": QUERY})
        assert response.status_code == 200
        data = response.json()
        assert data["backend"] == "prometheus"
        assert data["query"].startswith('cpu_usage{host="server1"} # time range: ')

    def test_translate_rrdtool(self, client, rrd_dir):
        """Test rrdtool translation includes the argument list."""
        response = client.post("/api/translate", json={"backend": "rrdtool", "query": QUERY})
        assert response.status_code == 200
        args = response.json()["args"]
        assert args[:5] == ['--json', '--start', '1685314800', '--end', '1685316540']
        assert args[5] == f'DEF:v1={rrd_dir}/cpu_usage_host-server1.rrd:value:AVERAGE'

    def test_unknown_backend(self, client):
        """Test 404 for a backend that is not configured."""
        response = client.post("/api/translate", json={"backend": "opentsdb", "query": QUERY})
        assert response.status_code == 404
        assert "Backend 'opentsdb' not configured" in response.json()["detail"]

    def test_untranslatable_query(self, client):
        """Test 400 for a query the backend rejects."""
        query = dict(QUERY, aggregations=[{'function': 'first', 'field': 'value'}])
        response = client.post("/api/translate", json={"backend": "prometheus", "query": query})
        assert response.status_code == 400
        assert response.json()["detail"].startswith("Cannot translate query for prometheus:")

    def test_malformed_query(self, client):
        """Test 400 for a malformed query definition."""
        response = client.post("/api/translate", json={"query": {"fields": ["value"]}})
        assert response.status_code == 400
        assert "measurement" in response.json()["detail"]

    def test_wrongly_typed_query(self, client):
        """Test 400 rather than a server error for a non-string interval."""
        query = dict(QUERY, interval=5)
        for backend in ("graphite", "rrdtool"):
            response = client.post("/api/translate", json={"backend": backend, "query": query})
            assert response.status_code == 400
            assert "'interval' must be a string" in response.json()["detail"]

    def test_missing_rrd_file(self, client):
        """Test 400 when no RRD file matches."""
        query = dict(QUERY, measurement='disk')
        response = client.post("/api/translate", json={"backend": "rrdtool", "query": query})
        assert response.status_code == 400
        assert "No RRD file found" in response.json()["detail"]

    def test_missing_query(self, client):
        """Test validation error for a request without a query."""
        response = client.post("/api/translate", json={"backend": "influxdb"})
        assert response.status_code == 422


class TestTranslateAllEndpoint:
    """Test translation for every backend."""

    def test_translate_all(self, client):
        """Test one translation per backend."""
        response = client.post("/api/translate/all", json={"query": QUERY})
        assert response.status_code == 200
        data = response.json()
        assert data["total_backends"] == 4
        assert data["failed_backends"] == 0
        translations = data["translations"]
        assert translations["graphite"]["query"] == (
            'target=servers.cpu_usage.server1&from=1685314800&until=1685316540&format=json'
        )
        assert translations["rrdtool"]["args"][-1] == 'XPORT:v1:value'
        assert all(t["status"] == "success" for t in translations.values())

    def test_partial_failure(self, client):
        """Test failing backends are reported alongside the others."""
        query = dict(QUERY, measurement='disk')
        data = client.post("/api/translate/all", json={"query": query}).json()
        assert data["failed_backends"] == 1
        assert data["translations"]["rrdtool"]["status"] == "error"
        assert "No RRD file found" in data["translations"]["rrdtool"]["error"]
        assert data["translations"]["influxdb"]["status"] == "success"


class TestMeasurementsEndpoint:
    """Test RRD measurement search."""

    def test_find_by_tag(self, client):
        """Test measurements with matching files."""
        response = client.post("/api/rrd/measurements", json={
            "conditions": [{"tag": "host", "value": "server1"}]
        })
        assert response.status_code == 200
        assert response.json() == {"measurements": ["cpu_usage", "mem"], "total_count": 2}

    def test_chain(self, client):
        """Test a left-to-right chain."""
        response = client.post("/api/rrd/measurements", json={
            "conditions": [
                {"tag": "host", "value": "server2"},
                {"tag": "env", "value": "prod", "connective": "OR"},
            ]
        })
        assert response.json()["measurements"] == ["cpu_usage", "mem"]

    def test_no_conditions(self, client):
        """Test every measurement matches an empty chain."""
        response = client.post("/api/rrd/measurements", json={})
        assert response.json()["total_count"] == 2

    def test_unsupported_operator(self, client):
        """Test 400 for an operator tags do not support."""
        response = client.post("/api/rrd/measurements", json={
            "conditions": [{"tag": "host", "operator": "LIKE", "value": "server"}]
        })
        assert response.status_code == 400
        assert "not supported" in response.json()["detail"]
