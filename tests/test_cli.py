"""Tests for the CLI interface."""

from typer.testing import CliRunner

from batchserve.cli.main import cli

runner = CliRunner()


class TestCLIStatus:
    def test_status_runs(self):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "Scheduler Configuration" in result.output
        assert "Model Configuration" in result.output

    def test_status_reads_environment(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "12")
        monkeypatch.setenv("MODEL_ID", "org/claims-model")
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "12" in result.output
        assert "org/claims-model" in result.output

    def test_status_invalid_configuration(self, monkeypatch):
        monkeypatch.setenv("DEVICE", "tpu")
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestCLIValidate:
    def test_validate_without_model_fails(self):
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 1
        assert "MODEL_ID or MODEL_PATH" in result.output

    def test_validate_with_model(self, monkeypatch):
        monkeypatch.setenv("MODEL_ID", "org/claims-model")
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 0
        assert "All validation checks passed" in result.output

    def test_validate_warns_on_large_cpu_batch(self, monkeypatch):
        monkeypatch.setenv("MODEL_ID", "org/claims-model")
        monkeypatch.setenv("DEVICE", "cpu")
        monkeypatch.setenv("BATCH_SIZE", "128")
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 0
        assert "WARN" in result.output
        assert "All validation checks passed" in result.output


class TestCLIServe:
    def test_serve_requires_model(self):
        result = runner.invoke(cli, ["serve"])
        assert result.exit_code == 1
        assert "MODEL_ID or MODEL_PATH" in result.output

    def test_serve_rejects_invalid_batch_size(self, monkeypatch):
        monkeypatch.setenv("MODEL_ID", "org/claims-model")
        result = runner.invoke(cli, ["serve", "--batch-size", "0"])
        assert result.exit_code == 1
        assert "Invalid option" in result.output

    def test_serve_rejects_invalid_port(self, monkeypatch):
        monkeypatch.setenv("MODEL_ID", "org/claims-model")
        result = runner.invoke(cli, ["serve", "--port", "0"])
        assert result.exit_code == 1
        assert "Invalid option" in result.output


def test_no_args_shows_help():
    result = runner.invoke(cli, [])
    assert "serve" in result.output
