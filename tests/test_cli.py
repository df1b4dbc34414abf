# /*
# Copyright 2026 The Bench Manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Tests for the command-line surface."""

import pytest
from typer.testing import CliRunner

import cli
from bench_manager.benchmark import BenchmarkState
from bench_manager.commands import setup_cmd
from cli import app

runner = CliRunner()


class TestHelp:
    def test_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for name in ("setup", "cleanup", "check-benchmark", "wait-benchmark", "run-benchmark",
                     "fix-kubectl", "create", "delete", "install", "deploy"):
            assert name in result.output

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "Usage" in result.output


class TestBenchmarkCommands:
    def test_check_without_benchmark(self, tmp_path):
        result = runner.invoke(app, ["check-benchmark", "--work-dir", str(tmp_path)])
        assert result.exit_code == BenchmarkState.NOT_FOUND

    def test_check_running(self, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "check_benchmark_status", lambda cfg: BenchmarkState.RUNNING)
        result = runner.invoke(app, ["check-benchmark", "--work-dir", str(tmp_path)])
        assert result.exit_code == 0

    def test_check_finished(self, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "check_benchmark_status", lambda cfg: BenchmarkState.FINISHED)
        result = runner.invoke(app, ["check-benchmark", "--work-dir", str(tmp_path)])
        assert result.exit_code == 2

    def test_wait_without_benchmark(self, tmp_path):
        result = runner.invoke(app, ["wait-benchmark", "--work-dir", str(tmp_path)])
        assert result.exit_code == 1

    def test_wait_finished(self, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "wait_for_benchmark", lambda model, bench: BenchmarkState.FINISHED)
        result = runner.invoke(app, ["wait-benchmark", "--work-dir", str(tmp_path)])
        assert result.exit_code == 0

    def test_run_passes_api_key(self, monkeypatch, tmp_path):
        seen = []
        monkeypatch.setattr(cli, "run_benchmark", lambda model, bench: seen.append(model))
        result = runner.invoke(app, ["run-benchmark", "--work-dir", str(tmp_path), "--api-key", "secret"])
        assert result.exit_code == 0
        assert seen[0].api_key == "secret"
        assert seen[0].work_dir == tmp_path.resolve()


class TestSetup:
    @pytest.fixture
    def captured(self, monkeypatch):
        calls = []
        monkeypatch.setattr(setup_cmd, "run_setup", lambda flags, cfg: calls.append((flags, cfg)))
        return calls

    def test_defaults(self, captured):
        result = runner.invoke(app, ["setup"])
        assert result.exit_code == 0
        flags, _ = captured[0]
        assert flags.create_cluster and flags.run_benchmark and flags.cleanup
        assert not flags.wait_benchmark

    def test_skip_flags(self, captured, tmp_path):
        result = runner.invoke(app, [
            "setup", "--skip-cluster-creation", "--skip-ports", "--no-cleanup",
            "--model", "mistral-7b", "--work-dir", str(tmp_path), "--grace-period", "0",
        ])
        assert result.exit_code == 0
        flags, cfg = captured[0]
        assert not flags.create_cluster
        assert not flags.check_ports
        assert not flags.cleanup
        assert flags.grace_period == 0
        assert cfg.model.model_name == "mistral-7b"
        assert cfg.aibrix.work_dir == tmp_path.resolve()

    def test_wait_requires_benchmark(self, captured):
        result = runner.invoke(app, ["setup", "--wait-benchmark", "--skip-benchmark"])
        assert result.exit_code == 2
        assert captured == []

    @pytest.mark.parametrize("retries", ["0", "11"])
    def test_retries_bounded(self, captured, retries):
        result = runner.invoke(app, ["setup", "--max-retries", retries])
        assert result.exit_code == 2
        assert captured == []

    def test_interrupt_skips_cleanup(self, monkeypatch):
        def interrupted(flags, cfg):
            raise KeyboardInterrupt

        monkeypatch.setattr(setup_cmd, "run_setup", interrupted)
        result = runner.invoke(app, ["setup", "--grace-period", "0"])
        assert result.exit_code == 1
        assert "Received interrupt signal" in result.output
        assert "Aborted" not in result.output


class TestCleanupCommand:
    def test_non_interactive(self, monkeypatch, tmp_path):
        calls = []
        monkeypatch.setattr(cli, "cleanup", lambda model, cluster, **kw: calls.append(kw))
        result = runner.invoke(app, ["cleanup", "--yes", "--keep-cluster", "--work-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert calls == [{"perform": True, "delete": False}]

    def test_prompts_by_default(self, monkeypatch, tmp_path):
        calls = []
        monkeypatch.setattr(cli, "cleanup", lambda model, cluster, **kw: calls.append(kw))
        runner.invoke(app, ["cleanup", "--work-dir", str(tmp_path)])
        assert calls == [{"perform": None, "delete": None}]


class TestFixKubectl:
    def test_failure_exit_code(self, monkeypatch):
        monkeypatch.setattr(cli, "fix_kubectl_config", lambda cfg: False)
        assert runner.invoke(app, ["fix-kubectl"]).exit_code == 1

    def test_success(self, monkeypatch):
        monkeypatch.setattr(cli, "fix_kubectl_config", lambda cfg: True)
        assert runner.invoke(app, ["fix-kubectl"]).exit_code == 0


class TestMain:
    def test_error_exits_nonzero(self, monkeypatch):
        def failing_app():
            raise RuntimeError("cluster down")

        monkeypatch.setattr(cli, "app", failing_app)
        with pytest.raises(SystemExit) as exc:
            cli.main()
        assert exc.value.code == 1
