"""
Tests for the translate_query command line tool.
"""

import json
import os
import sys
import tempfile

import pytest

from tsdb_query import AppConfig, DriverError


class TestLoadQueries:
    """Test query file loading."""

    def _write(self, content, suffix):
        with tempfile.NamedTemporaryFile(mode='w', suffix=suffix, delete=False) as f:
            f.write(content)
            return f.name

    def test_load_single_json_query(self):
        """Test a file holding one query."""
        from translate_query import load_queries

        path = self._write(json.dumps({"measurement": "cpu_usage", "fields": ["value"]}), '.json')
        try:
            queries = load_queries(path)
            assert queries == {"query": {"measurement": "cpu_usage", "fields": ["value"]}}
        finally:
            os.unlink(path)

    def test_load_query_list(self):
        """Test a list of queries gets numbered names."""
        from translate_query import load_queries

        path = self._write(json.dumps([{"measurement": "cpu"}, {"measurement": "mem"}]), '.json')
        try:
            queries = load_queries(path)
            assert list(queries) == ["query_1", "query_2"]
            assert queries["query_2"]["measurement"] == "mem"
        finally:
            os.unlink(path)

    def test_load_named_yaml_queries(self):
        """Test a YAML mapping of named queries."""
        from translate_query import load_queries

        content = (
            "cpu_by_host:\n"
            "  measurement: cpu_usage\n"
            "  group_by: [host]\n"
            "disk_free:\n"
            "  measurement: disk\n"
        )
        path = self._write(content, '.yaml')
        try:
            queries = load_queries(path)
            assert set(queries) == {"cpu_by_host", "disk_free"}
            assert queries["cpu_by_host"]["group_by"] == ["host"]
        finally:
            os.unlink(path)

    def test_empty_file(self):
        """Test an empty file holds no queries."""
        from translate_query import load_queries

        path = self._write('', '.yaml')
        try:
            assert load_queries(path) == {}
        finally:
            os.unlink(path)

    def test_missing_file(self):
        """Test error for a missing file."""
        from translate_query import load_queries

        with pytest.raises(ValueError, match="Query file not found"):
            load_queries('/nonexistent/queries.json')

    def test_invalid_json(self):
        """Test error for malformed JSON."""
        from translate_query import load_queries

        path = self._write('{"measurement": ', '.json')
        try:
            with pytest.raises(ValueError, match="Invalid JSON"):
                load_queries(path)
        finally:
            os.unlink(path)

    def test_invalid_yaml(self):
        """Test error for malformed YAML."""
        from translate_query import load_queries

        path = self._write('queries: [unclosed\n', '.yaml')
        try:
            with pytest.raises(ValueError, match="Invalid YAML"):
                load_queries(path)
        finally:
            os.unlink(path)

    def test_invalid_structure(self):
        """Test error for content that is not a query."""
        from translate_query import load_queries

        scalar = self._write('42', '.json')
        bad_entry = self._write(json.dumps({"cpu": "not a mapping"}), '.json')
        try:
            with pytest.raises(ValueError, match="must contain a query"):
                load_queries(scalar)
            with pytest.raises(ValueError, match="Query 'cpu': Definition must be a mapping"):
                load_queries(bad_entry)
        finally:
            os.unlink(scalar)
            os.unlink(bad_entry)


class TestTranslateQueries:
    """Test batch translation."""

    def test_create_drivers(self):
        """Test drivers for all or selected backends."""
        from translate_query import create_drivers

        config = AppConfig()
        assert list(create_drivers(config)) == ["influxdb", "prometheus", "graphite", "rrdtool"]
        assert list(create_drivers(config, ["prometheus"])) == ["prometheus"]

        with pytest.raises(DriverError):
            create_drivers(config, ["opentsdb"])

    def test_translate_queries(self):
        """Test results per query and backend."""
        from translate_query import create_drivers, translate_queries

        drivers = create_drivers(AppConfig(drivers={"influxdb": {"bucket": "metrics"}, "prometheus": {}}))
        queries = {
            "cpu": {"measurement": "cpu_usage", "latest": "1h"},
            "broken": {"measurement": "cpu_usage", "aggregations": [{"function": "first"}]},
        }

        results = translate_queries(queries, drivers)

        assert results["cpu"]["prometheus"] == {
            "status": "success",
            "query": "cpu_usage # relative time: 1h",
        }
        assert results["cpu"]["influxdb"]["query"].startswith('from(bucket: "metrics")')
        assert results["broken"]["influxdb"]["status"] == "success"
        assert results["broken"]["prometheus"]["status"] == "error"
        assert "first" in results["broken"]["prometheus"]["error"]

    def test_main_writes_output(self, tmp_path, monkeypatch):
        """Test the CLI end to end."""
        from translate_query import main

        queries = tmp_path / "queries.json"
        queries.write_text(json.dumps({"measurement": "up"}))
        output = tmp_path / "out.json"
        monkeypatch.setattr(sys, "argv", [
            "translate_query.py", str(queries), "-b", "prometheus", "-o", str(output),
        ])

        main()

        assert json.loads(output.read_text()) == {
            "query": {"prometheus": {"status": "success", "query": "up"}}
        }

    def test_main_invalid_file(self, tmp_path, monkeypatch, capsys):
        """Test the CLI exits with an error for a bad query file."""
        from translate_query import main

        monkeypatch.setattr(sys, "argv", ["translate_query.py", str(tmp_path / "missing.json")])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert "Query file not found" in json.loads(capsys.readouterr().err)["error"]
