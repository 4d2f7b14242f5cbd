"""
Test suite for the sidecar host application
"""
import pytest
from fastapi.testclient import TestClient
import app as sidecar
from app import app
from conftest import write_properties

client = TestClient(app)


@pytest.fixture
def reporter_file(tmp_path, monkeypatch):
    """Point the application configuration at a temporary file"""
    configuration = sidecar.configuration
    path = tmp_path / "influxdb.properties"

    monkeypatch.setattr(configuration, "config_path", path)
    monkeypatch.setattr(configuration, "_environ", {})
    monkeypatch.setattr(configuration, "_snapshot", configuration.snapshot)

    write_properties(path, {"mode": "http", "host": "influx", "auth": "admin:secret"})
    configuration.load()
    return path


def test_health_check():
    """Test health endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] in ("healthy", "degraded", "unhealthy")
    assert "version" in data
    assert data["reporter"]["state"] == "stopped"
    assert "total_reloads" in data["reload"]


def test_health_lists_config_problems(reporter_file):
    """Test configuration problems are reported"""
    write_properties(reporter_file, {"mode": "carrier-pigeon"})
    sidecar.configuration.load()

    response = client.get("/health")
    data = response.json()

    assert data["status"] == "unhealthy"
    assert any("carrier-pigeon" in p for p in data["config_problems"])


def test_metrics_endpoint():
    """Test Prometheus exposition"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "influxdb_sidecar_config_reloads_total" in response.text
    assert "influxdb_sidecar_reporter_running" in response.text


def test_config_redacts_credentials(reporter_file):
    """Test auth is never returned in clear text"""
    response = client.get("/config")
    assert response.status_code == 200
    data = response.json()
    assert data["source"] == str(reporter_file)
    assert data["properties"]["host"] == "influx"
    assert data["properties"]["auth"] == "***"
    assert "secret" not in response.text


def test_reload_reports_changes(reporter_file):
    """Test manual reload picks up edits"""
    write_properties(reporter_file, {"mode": "http", "host": "influx2", "auth": "admin:secret"})

    response = client.post("/config/reload")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["changes"] == [{"key": "host", "type": "modified"}]

    response = client.post("/config/reload")
    assert response.json()["status"] == "skipped"


def test_reload_missing_file(reporter_file):
    """Test a missing file fails the reload and keeps the configuration"""
    reporter_file.unlink()

    response = client.post("/config/reload")
    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    assert client.get("/config").json()["properties"]["host"] == "influx"


def test_reload_history(reporter_file):
    """Test reload history endpoint"""
    client.post("/config/reload")

    response = client.get("/config/reload/history?limit=5")
    assert response.status_code == 200
    history = response.json()["history"]
    assert 1 <= len(history) <= 5
    assert history[0]["status"] in ("success", "skipped", "failed")


@pytest.mark.parametrize("limit", [0, 101])
def test_reload_history_limit_validation(limit):
    """Test out-of-range limits are rejected"""
    response = client.get(f"/config/reload/history?limit={limit}")
    assert response.status_code == 400
