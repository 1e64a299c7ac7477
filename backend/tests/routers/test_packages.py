"""
Tests for the packages API
"""
import inspect

import pytest
from fastapi.testclient import TestClient

from forge.core import Exporter, HqValidator, PackageBuilder
from forge.core.cli_validator import CliValidator, StaticToolchainProbe
from forge.pipeline import ForgePipeline
import main
from main import app
from routers import packages
from services import event_service


class StaticGenerator:
    def __init__(self, files):
        self.files = files

    def generate(self, context, feedback=None, previous_files=None):
        return self.files


@pytest.fixture
def exports_dir(temp_workspace):
    return temp_workspace / "exports"


@pytest.fixture
def client(temp_workspace, exports_dir, valid_files, monkeypatch):
    def pipeline():
        return ForgePipeline(
            builder=PackageBuilder(temp_workspace / "build"),
            validators=[CliValidator(probe=StaticToolchainProbe(False)), HqValidator()],
            exporter=Exporter(exports_dir),
            log_dir=temp_workspace / "logs",
        )

    monkeypatch.setattr(packages, "BUILD_DIR", temp_workspace / "build")
    app.dependency_overrides[packages.get_pipeline] = pipeline
    app.dependency_overrides[packages.get_generator] = lambda: StaticGenerator(valid_files)
    app.dependency_overrides[packages.get_exports_dir] = lambda: exports_dir
    event_service.clear_runs()

    yield TestClient(app)

    app.dependency_overrides.clear()
    event_service.clear_runs()


class TestPackagesApi:
    """Test suite for the packages router"""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_runs_off_the_event_loop(self):
        assert not inspect.iscoroutinefunction(main.health_check)

    def test_validate_upload(self, client, write_archive, valid_files, temp_workspace):
        data = write_archive(valid_files).read_bytes()

        response = client.post(
            "/api/packages/validate",
            files={"file": ("app.ccz", data, "application/zip")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["app_name"] == "Patient Tracker"
        assert body["artifact_paths"]["export_path"].endswith("Patient Tracker.ccz")
        assert list((temp_workspace / "build" / "uploads").iterdir()) == []

    def test_validate_rejects_garbage(self, client):
        response = client.post(
            "/api/packages/validate",
            files={"file": ("junk.ccz", b"not a zip", "application/zip")},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["errors"][0].startswith("Failed to parse junk.ccz")

    def test_validate_damaged_entry(self, client, damaged_archive, temp_workspace):
        data = damaged_archive("deflate").read_bytes()

        response = client.post(
            "/api/packages/validate",
            files={"file": ("app.ccz", data, "application/zip")},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["errors"][0].startswith("Failed to parse app.ccz")
        assert list((temp_workspace / "build" / "uploads").iterdir()) == []

    def test_generate_run(self, client):
        response = client.post("/api/packages/generate", json={"context": "register patients", "maxAttempts": 2})

        assert response.status_code == 202
        run_id = response.json()["runId"]

        run = client.get(f"/api/runs/{run_id}").json()
        assert run["status"] == "succeeded"
        assert run["result"]["success"] is True
        assert run["events"][0]["state"] == "generating"
        assert run["events"][-1]["state"] == "done"
        assert all(e["max_attempts"] == 2 for e in run["events"])

    def test_generate_validates_request(self, client):
        response = client.post("/api/packages/generate", json={"context": "x"})

        assert response.status_code == 422

    def test_unknown_run(self, client):
        assert client.get("/api/runs/nope").status_code == 404

    def test_download_export(self, client, exports_dir):
        exports_dir.mkdir(parents=True)
        (exports_dir / "Clinic.ccz").write_bytes(b"zip bytes")

        response = client.get("/api/exports/Clinic.ccz")

        assert response.status_code == 200
        assert response.content == b"zip bytes"

    def test_download_missing_export(self, client):
        assert client.get("/api/exports/Clinic.ccz").status_code == 404

    def test_download_hidden_file(self, client):
        assert client.get("/api/exports/.env").status_code == 400

    def test_import(self, client, exports_dir):
        exports_dir.mkdir(parents=True)
        json_path = exports_dir / "Clinic.json"
        json_path.write_text("{}")

        response = client.post(
            "/api/packages/import",
            json={"jsonPath": str(json_path), "server": "www.commcarehq.org", "domain": "demo"},
        )

        assert response.status_code == 200
        assert response.json()["importUrl"] == "https://www.commcarehq.org/a/demo/settings/project/import_app/"

    def test_import_missing_file(self, client, exports_dir):
        exports_dir.mkdir(parents=True)

        response = client.post(
            "/api/packages/import",
            json={"jsonPath": str(exports_dir / "nope.json"), "server": "www.commcarehq.org", "domain": "demo"},
        )

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Exported file not found")

    @pytest.mark.parametrize("name", ["elsewhere/Clinic.json", "exports/../Clinic.json", "exports/Clinic.txt"])
    def test_import_only_reads_exports(self, client, temp_workspace, exports_dir, name):
        """Files outside the exports directory are refused whether or not they exist"""
        exports_dir.mkdir(parents=True)
        (exports_dir / "Clinic.txt").write_text("{}")
        (temp_workspace / "Clinic.json").write_text("{}")
        (temp_workspace / "elsewhere").mkdir()
        (temp_workspace / "elsewhere" / "Clinic.json").write_text("{}")

        response = client.post(
            "/api/packages/import",
            json={"jsonPath": str(temp_workspace / name), "server": "www.commcarehq.org", "domain": "demo"},
        )

        assert response.status_code == 400
        assert "exports directory" in response.json()["detail"]
