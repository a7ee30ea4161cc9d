"""Tests for CLI commands"""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from typer.testing import CliRunner

from cli.client.base import APIClient, LabMatchError
from cli.main import app
from cli.utils.config_manager import ConfigManager


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


def client_mock(mock_client_class) -> MagicMock:
    """Wire a patched LabMatchClient class to a context-managed mock"""
    mock_client = MagicMock()
    mock_client.__enter__.return_value = mock_client
    mock_client_class.return_value = mock_client
    return mock_client


JOB = {
    "id": "6f1c2a9e-1111-4c4c-9b9b-0123456789ab",
    "type": "run_matching",
    "payload": {"type": "run_matching", "researcher_a_id": "a", "researcher_b_id": "b"},
    "status": "dead",
    "priority": 0,
    "attempts": 3,
    "max_attempts": 3,
    "last_error": "evaluator timed out",
    "enqueued_at": "2025-02-01T10:15:00+00:00",
}


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        """Test version option"""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "LabMatch CLI" in result.stdout

    @patch("cli.main.LabMatchClient")
    def test_status_success(self, mock_client_class, runner):
        """Test status command with successful connection"""
        mock_client = client_mock(mock_client_class)
        mock_client.health_check.return_value = {
            "version": "1.0.0",
            "environment": "development",
            "queue": {"backend": "postgres", "queue_depth": 4, "dead_jobs": 1},
        }

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout
        assert "postgres" in result.stdout

    @patch("cli.main.LabMatchClient")
    def test_status_failure(self, mock_client_class, runner):
        """Test status command when the API is unreachable"""
        mock_client = client_mock(mock_client_class)
        mock_client.health_check.side_effect = LabMatchError("Connection failed")

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout

    def test_invalid_command(self, runner):
        """Test invalid command handling"""
        result = runner.invoke(app, ["invalid-command"])
        assert result.exit_code != 0


class TestJobsCommands:
    """Test job backlog commands"""

    @patch("cli.commands.jobs.LabMatchClient")
    def test_list_jobs(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.list_jobs.return_value = {"jobs": [JOB], "total": 45}

        result = runner.invoke(app, ["jobs", "list", "--status", "dead", "--limit", "20"])
        assert result.exit_code == 0
        assert "of 45 jobs" in result.stdout
        assert "--offset 20" in result.stdout
        mock_client.list_jobs.assert_called_once_with(
            status=["dead"], type=None, limit=20, offset=0
        )

    @patch("cli.commands.jobs.LabMatchClient")
    def test_list_jobs_empty(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.list_jobs.return_value = {"jobs": [], "total": 0}

        result = runner.invoke(app, ["jobs", "list"])
        assert result.exit_code == 0
        assert "No jobs found" in result.stdout

    @patch("cli.commands.jobs.LabMatchClient")
    def test_show_job(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.get_job.return_value = JOB

        result = runner.invoke(app, ["jobs", "show", JOB["id"]])
        assert result.exit_code == 0
        assert "evaluator timed out" in result.stdout
        assert "researcher_a_id" in result.stdout

    @patch("cli.commands.jobs.LabMatchClient")
    def test_stats_warns_about_dead_jobs(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.get_job_stats.return_value = {
            "total_jobs": 10,
            "by_status": {"pending": 6, "dead": 4},
            "by_type": {"run_matching": 10},
            "queue_depth": 6,
            "dead_jobs": 4,
        }

        result = runner.invoke(app, ["jobs", "stats"])
        assert result.exit_code == 0
        assert "Job Statistics" in result.stdout
        assert "4 dead job(s)" in result.stdout

    @patch("cli.commands.jobs.LabMatchClient")
    def test_retry_job(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.retry_job.return_value = {"job_id": JOB["id"], "new_job_id": "job-7"}

        result = runner.invoke(app, ["jobs", "retry", JOB["id"]])
        assert result.exit_code == 0
        assert "re-enqueued as job-7" in result.stdout
        mock_client.retry_job.assert_called_once_with(JOB["id"])

    @patch("cli.commands.jobs.LabMatchClient")
    def test_retry_job_not_eligible(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.retry_job.side_effect = LabMatchError(
            "API Error 404: Job not found or not eligible for retry", status_code=404
        )

        result = runner.invoke(app, ["jobs", "retry", JOB["id"]])
        assert result.exit_code == 1
        assert "Failed to retry job" in result.stdout
        assert "Only dead jobs can be retried" in result.stdout

    @patch("cli.commands.jobs.LabMatchClient")
    def test_cleanup_with_confirmation_skipped(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.cleanup_jobs.return_value = {"deleted_count": 12, "retention_days": 30}

        result = runner.invoke(app, ["jobs", "cleanup", "--yes"])
        assert result.exit_code == 0
        assert "Archived 12 completed job(s)" in result.stdout

    @patch("cli.commands.jobs.LabMatchClient")
    def test_cleanup_cancelled(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)

        result = runner.invoke(app, ["jobs", "cleanup"], input="n\n")
        assert result.exit_code == 0
        assert "cancelled" in result.stdout
        mock_client.cleanup_jobs.assert_not_called()


class TestMatchingCommands:
    """Test matching trigger commands"""

    @patch("cli.commands.matching.LabMatchClient")
    def test_scan(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.trigger_scan.return_value = {"enqueued": 17, "entity_id": None}

        result = runner.invoke(app, ["matching", "scan"])
        assert result.exit_code == 0
        assert "Enqueued 17" in result.stdout

    @patch("cli.commands.matching.LabMatchClient")
    def test_scan_nothing_eligible(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.trigger_scan.return_value = {"enqueued": 0, "entity_id": None}

        result = runner.invoke(app, ["matching", "scan"])
        assert result.exit_code == 0
        assert "nothing enqueued" in result.stdout

    @patch("cli.commands.matching.LabMatchClient")
    def test_refresh_entity(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.refresh_entity.return_value = {"enqueued": 3, "entity_id": "r-42"}

        result = runner.invoke(app, ["matching", "refresh-entity", "r-42"])
        assert result.exit_code == 0
        assert "Enqueued 3" in result.stdout
        mock_client.refresh_entity.assert_called_once_with("r-42")

    @patch("cli.commands.matching.LabMatchClient")
    def test_scan_api_error(self, mock_client_class, runner):
        mock_client = client_mock(mock_client_class)
        mock_client.trigger_scan.side_effect = LabMatchError("API Error 503: backlog unavailable")

        result = runner.invoke(app, ["matching", "scan"])
        assert result.exit_code == 1
        assert "Failed to trigger scan" in result.stdout


class TestConfigCommands:
    """Test configuration commands"""

    @patch("cli.commands.config.config")
    def test_set_config(self, mock_config, runner):
        """Test setting configuration"""
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://localhost:8000"])
        assert result.exit_code == 0
        mock_config.set.assert_called_once_with("api.base_url", "http://localhost:8000")

    @patch("cli.commands.config.config")
    def test_set_numeric_value_keeps_type(self, mock_config, runner):
        result = runner.invoke(app, ["config", "set", "display.jobs_per_page", "50"])
        assert result.exit_code == 0
        mock_config.set.assert_called_once_with("display.jobs_per_page", 50)

    def test_set_config_invalid_url(self, runner):
        """Test setting invalid URL"""
        result = runner.invoke(app, ["config", "set", "api.base_url", "invalid-url"])
        assert result.exit_code == 1
        assert "must start with http" in result.stdout

    @patch("cli.commands.config.config")
    def test_get_config(self, mock_config, runner):
        """Test getting configuration"""
        mock_config.get.return_value = "http://localhost:8000"

        result = runner.invoke(app, ["config", "get", "api.base_url"])
        assert result.exit_code == 0
        assert "http://localhost:8000" in result.stdout

    @patch("cli.commands.config.config")
    def test_unset_config(self, mock_config, runner):
        mock_config.unset.return_value = True
        mock_config.get.return_value = 30

        result = runner.invoke(app, ["config", "unset", "api.timeout"])
        assert result.exit_code == 0
        assert "Unset api.timeout" in result.stdout
        mock_config.unset.assert_called_once_with("api.timeout")

    @patch("cli.commands.config.config")
    def test_show_config(self, mock_config, runner):
        """Test showing all configuration"""
        mock_config.load_config.return_value = {
            "api": {"base_url": "http://localhost:8000", "timeout": 30}
        }

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "Configuration" in result.stdout


class TestConfigManager:
    """Test the YAML-backed config store"""

    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(tmp_path)

        assert manager.get("api.timeout") == 30
        assert manager.get("api.missing", "fallback") == "fallback"

    def test_set_persists_and_merges(self, tmp_path):
        manager = ConfigManager(tmp_path)

        manager.set("api.base_url", "http://labmatch.internal:9000")

        reloaded = ConfigManager(tmp_path)
        assert reloaded.get("api.base_url") == "http://labmatch.internal:9000"
        assert reloaded.get("api.timeout") == 30

    def test_unset_restores_default(self, tmp_path):
        manager = ConfigManager(tmp_path)
        manager.set("api.timeout", 5)

        assert manager.unset("api.timeout") is True
        assert manager.get("api.timeout") == 30
        assert manager.unset("api.timeout") is False

    def test_env_overrides_default_url(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LABMATCH_API_URL", "http://api.example:8000")

        assert ConfigManager(tmp_path).get("api.base_url") == "http://api.example:8000"

    def test_reset(self, tmp_path):
        manager = ConfigManager(tmp_path)
        manager.set("display.jobs_per_page", 99)

        manager.reset()

        assert manager.get("display.jobs_per_page") == 20


class TestAPIClient:
    """Test envelope handling against a mocked transport"""

    def make_client(self, handler) -> APIClient:
        client = APIClient("http://testserver")
        client.client = httpx.Client(
            base_url="http://testserver", transport=httpx.MockTransport(handler)
        )
        return client

    def test_unwraps_success_envelope(self):
        def handler(request):
            assert request.url.path == "/v1/jobs/stats/overview"
            assert request.headers["X-Request-ID"]
            return httpx.Response(200, json={"ok": True, "data": {"queue_depth": 3}})

        with self.make_client(handler) as client:
            assert client.get("/jobs/stats/overview") == {"queue_depth": 3}

    def test_error_envelope_raises(self):
        def handler(request):
            return httpx.Response(
                404, json={"ok": False, "error": {"message": "Job not found", "code": 404}}
            )

        with self.make_client(handler) as client:
            with pytest.raises(LabMatchError, match="API Error 404: Job not found") as exc_info:
                client.post("/jobs/abc/retry")

        assert exc_info.value.status_code == 404
        assert exc_info.value.request_id

    def test_connection_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.make_client(handler) as client:
            with pytest.raises(LabMatchError, match="Connection failed"):
                client.get("/healthz")
