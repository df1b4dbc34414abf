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

"""Tests for configuration loading, overrides, and flag validation."""

from pathlib import Path

import pytest
import typer
from pydantic import ValidationError

from bench_manager.config import (
    ActionFlags,
    AibrixConfig,
    BenchmarkConfig,
    ClusterConfig,
    ModelConfig,
    resolve_config,
    validate_flags,
    with_overrides,
)
from bench_manager.constants import MANIFESTS_DIR, dep_value


class TestDefaults:
    def test_cluster_defaults(self):
        cfg = ClusterConfig()
        assert cfg.max_retries == 3
        assert cfg.wait == "5m"
        assert cfg.api_server_port == 6443

    def test_pinned_versions_come_from_dependencies(self):
        cfg = AibrixConfig()
        assert cfg.aibrix_version == dep_value("aibrix", "version") == "v0.2.1"
        assert cfg.nvkind_url.endswith("nvkind-linux-amd64.tar.gz")

    def test_benchmark_sweep_defaults(self):
        cfg = BenchmarkConfig()
        assert (cfg.input_start, cfg.input_limit) == (4, 8196)
        assert (cfg.output_start, cfg.output_limit) == (4, 2048)
        assert (cfg.rate_start, cfg.rate_limit) == (1, 64)
        assert cfg.image == "aibrix/runtime:nightly"

    def test_action_flags_default_to_full_run(self):
        flags = ActionFlags()
        assert flags.create_cluster and flags.run_benchmark and flags.cleanup
        assert not flags.wait_benchmark


class TestEnvironment:
    def test_env_overrides_default(self, monkeypatch):
        monkeypatch.setenv("BENCH_MAX_RETRIES", "5")
        assert ClusterConfig().max_retries == 5

    def test_benchmark_prefix(self, monkeypatch):
        monkeypatch.setenv("BENCH_BENCHMARK_IMAGE", "example/bench:1")
        assert BenchmarkConfig().image == "example/bench:1"

    def test_invalid_retries_rejected(self):
        with pytest.raises(ValidationError):
            ClusterConfig(max_retries=11)

    def test_invalid_port_rejected(self):
        with pytest.raises(ValidationError):
            ModelConfig(forward_port=0)

    def test_invalid_wait_rejected(self):
        with pytest.raises(ValidationError):
            ClusterConfig(wait="five minutes")


class TestResolveConfig:
    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("BENCH_MODEL_NAME", "env-model")
        assert resolve_config().model.model_name == "env-model"
        assert resolve_config(model_name="cli-model").model.model_name == "cli-model"

    def test_work_dir_applies_to_checkout_and_state(self, tmp_path):
        cfg = resolve_config(work_dir=tmp_path)
        assert cfg.aibrix.work_dir == tmp_path.resolve()
        assert cfg.model.work_dir == tmp_path.resolve()
        assert cfg.aibrix.repo_path == tmp_path.resolve() / "aibrix"

    def test_overrides(self):
        cfg = resolve_config(max_retries=1, api_key="secret", benchmark_image="img:2", aibrix_version="v0.3.0")
        assert cfg.cluster.max_retries == 1
        assert cfg.model.api_key == "secret"
        assert cfg.benchmark.image == "img:2"
        assert cfg.aibrix.aibrix_version == "v0.3.0"

    @pytest.mark.parametrize("max_retries", [0, 11])
    def test_retries_out_of_range_rejected(self, max_retries):
        with pytest.raises(ValidationError):
            resolve_config(max_retries=max_retries)

    @pytest.mark.parametrize("model_name", ["../Evil Model", "Llama", "model/"])
    def test_unsafe_model_name_rejected(self, model_name):
        with pytest.raises(ValidationError):
            resolve_config(model_name=model_name)

    def test_bad_version_rejected(self):
        with pytest.raises(ValidationError):
            resolve_config(aibrix_version="latest")


class TestWithOverrides:
    def test_keeps_other_fields(self, tmp_path):
        cfg = ModelConfig(work_dir=tmp_path, forward_port=9010)
        updated = with_overrides(cfg, model_name="mistral-7b")
        assert updated.model_name == "mistral-7b"
        assert updated.forward_port == 9010
        assert updated.work_dir == tmp_path
        assert cfg.model_name == "llama-2-7b-hf"

    def test_negative_wait_rejected(self):
        with pytest.raises(ValidationError):
            with_overrides(ClusterConfig(), delete_wait_seconds=-1)


class TestModelPaths:
    def test_state_files_live_in_work_dir(self, tmp_path):
        cfg = ModelConfig(work_dir=tmp_path)
        assert cfg.benchmark_pid_file == tmp_path / ".benchmark.pid"
        assert cfg.port_forward_pid_file == tmp_path / ".port_forward.pid"
        assert cfg.result_file == tmp_path / "profiles" / "results" / "llama-2-7b-hf.jsonl"

    def test_packaged_manifest_is_fallback(self, tmp_path):
        cfg = ModelConfig(work_dir=tmp_path)
        assert cfg.manifest_path == MANIFESTS_DIR / "llama-2-7b-hf.yaml"
        assert cfg.manifest_path.exists()

    def test_local_manifest_wins(self, tmp_path):
        local = tmp_path / "llama-2-7b-hf.yaml"
        local.write_text("kind: Deployment\n")
        assert ModelConfig(work_dir=tmp_path).manifest_path == local


class TestValidateFlags:
    def test_wait_without_benchmark_rejected(self):
        with pytest.raises(typer.BadParameter):
            validate_flags(False, False, False, skip_benchmark=True, wait_benchmark=True)

    def test_risky_combinations_only_warn(self, caplog):
        validate_flags(True, False, True, False, False)
        messages = " ".join(r.getMessage() for r in caplog.records)
        assert "--skip-cluster-creation" in messages
        assert "--skip-deploy" in messages


def test_manifests_dir_is_packaged():
    assert isinstance(MANIFESTS_DIR, Path)
    assert (MANIFESTS_DIR / "llama-2-7b-hf.yaml").is_file()
