"""Tests for the veriledger command-line interface."""
import json

import pytest
from unittest.mock import MagicMock, patch

from veriledger import cli
from veriledger.config.settings import PipelineSettings
from veriledger.errors import AllGatewaysFailedError, ConfigError
from veriledger.pipeline.models import FetchMode, FetchResult, GatewayAttempt


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("veriledger.cli.configure_logging"):
        yield


@pytest.fixture
def settings():
    return PipelineSettings.from_sources({"ledger": {"account_id": "0.0.1001"}}, {})


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock()
    orchestrator.get_statistics.return_value = {"total_processed": 0}
    return orchestrator


class TestParse:
    """The parse command needs no ledger or gateways."""

    def test_prints_claim_json(self, capsys):
        assert cli.main(["parse", "Company X increased output by 40%"]) == 0

        claim = json.loads(capsys.readouterr().out)
        assert claim["claim_type"] == "quantified"
        assert claim["subject"] == "Company X"

    def test_semantic_without_key_falls_back(self, capsys, settings):
        with patch("veriledger.cli.PipelineSettings.load", return_value=settings):
            assert cli.main(["parse", "--semantic", "The sky is blue"]) == 0

        captured = capsys.readouterr()
        assert "patterns only" in captured.err
        assert json.loads(captured.out)["semantic_coherence"] is None


class TestProcess:
    """Tests for processing a single content id."""

    def test_success(self, capsys, settings, orchestrator):
        orchestrator.process_content_id.return_value.to_dict.return_value = {"content_id": "QmA"}

        with patch("veriledger.cli.PipelineSettings.load", return_value=settings), \
                patch("veriledger.cli.build_orchestrator", return_value=orchestrator):
            code = cli.main(["process", "QmA", "--topic", "0.0.7", "--transaction-id", "0.0.1@1.2"])

        assert code == 0
        orchestrator.process_content_id.assert_called_once_with("QmA", topic_id="0.0.7", transaction_id="0.0.1@1.2")
        orchestrator.save_health.assert_called_once()
        assert json.loads(capsys.readouterr().out) == {"content_id": "QmA"}

    def test_all_gateways_failed(self, capsys, settings, orchestrator):
        orchestrator.process_content_id.side_effect = AllGatewaysFailedError("QmA", [])

        with patch("veriledger.cli.PipelineSettings.load", return_value=settings), \
                patch("veriledger.cli.build_orchestrator", return_value=orchestrator):
            assert cli.main(["process", "QmA"]) == 1

        assert "All content gateways failed for QmA" in capsys.readouterr().err
        orchestrator.save_health.assert_called_once()

    def test_fetch_mode_override(self, settings, orchestrator):
        with patch("veriledger.cli.PipelineSettings.load", return_value=settings), \
                patch("veriledger.cli.build_orchestrator", return_value=orchestrator) as build:
            cli.main(["--fetch-mode", "best_effort", "process", "QmA"])

        assert build.call_args.args[0].gateway.fetch_mode == FetchMode.BEST_EFFORT

    def test_config_error(self, capsys):
        with patch("veriledger.cli.PipelineSettings.load", side_effect=ConfigError("bad poll_interval_ms")):
            assert cli.main(["process", "QmA"]) == 1

        assert "bad poll_interval_ms" in capsys.readouterr().err


class TestFetch:
    """Tests for the fetch command."""

    def test_prints_attempt_log_and_preview(self, capsys, settings, orchestrator):
        result = FetchResult(content_id="QmA", gateway_used="https://g1.example/ipfs/", raw_text="x" * 300, succeeded=True)
        result.attempts_log.append(GatewayAttempt(gateway="https://g1.example/ipfs/", duration_ms=12.0, outcome="success"))
        orchestrator.fetcher.fetch.return_value = result

        with patch("veriledger.cli.PipelineSettings.load", return_value=settings), \
                patch("veriledger.cli.build_orchestrator", return_value=orchestrator):
            assert cli.main(["fetch", "QmA", "--max-gateways", "2", "--preview", "10"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["content_preview"] == "x" * 10
        assert output["attempts_log"][0]["outcome"] == "success"
        orchestrator.fetcher.fetch.assert_called_once_with("QmA", max_gateways=2)

    def test_failure_prints_attempts(self, capsys, settings, orchestrator):
        attempt = GatewayAttempt(gateway="https://g1.example/ipfs/", duration_ms=5.0, outcome="timeout", error="timed out")
        orchestrator.fetcher.fetch.side_effect = AllGatewaysFailedError("QmA", [attempt])

        with patch("veriledger.cli.PipelineSettings.load", return_value=settings), \
                patch("veriledger.cli.build_orchestrator", return_value=orchestrator):
            assert cli.main(["fetch", "QmA"]) == 1

        output = json.loads(capsys.readouterr().out)
        assert output["failures"][0]["outcome"] == "timeout"


class TestConfig:
    """Tests for the config check."""

    def test_complete_config(self, capsys, settings):
        with patch("veriledger.cli.PipelineSettings.load", return_value=settings):
            assert cli.main(["config"]) == 0

        assert "VERILEDGER_ACCOUNT_ID: OK" in capsys.readouterr().out

    def test_missing_account(self, capsys):
        with patch("veriledger.cli.PipelineSettings.load", return_value=PipelineSettings.from_sources({}, {})):
            assert cli.main(["config"]) == 1

        assert "Missing required settings: VERILEDGER_ACCOUNT_ID" in capsys.readouterr().out


class TestRun:
    """Tests for the watch loop command."""

    def test_runs_for_duration(self, capsys, settings, orchestrator):
        with patch("veriledger.cli.PipelineSettings.load", return_value=settings), \
                patch("veriledger.cli.build_orchestrator", return_value=orchestrator), \
                patch("veriledger.cli.time.sleep") as sleep:
            assert cli.main(["run", "--poll-interval-ms", "500", "--duration", "3"]) == 0

        orchestrator.start.assert_called_once_with(500)
        sleep.assert_called_once_with(3.0)
        orchestrator.stop.assert_called_once_with(wait=True)
        assert '"total_processed": 0' in capsys.readouterr().out

    def test_missing_watcher_config(self, capsys, settings, orchestrator):
        orchestrator.start.side_effect = ConfigError("No ledger watcher configured")

        with patch("veriledger.cli.PipelineSettings.load", return_value=settings), \
                patch("veriledger.cli.build_orchestrator", return_value=orchestrator):
            assert cli.main(["run"]) == 1


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "usage: veriledger" in capsys.readouterr().out
