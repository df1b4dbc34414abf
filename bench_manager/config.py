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

"""Configuration classes, action flags, and config resolution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import typer
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.constants import (
    API_SERVER_PORT,
    BENCHMARK_PID_FILE,
    BENCHMARK_POLL_INTERVAL_SECONDS,
    BENCHMARK_RESULT_DIR,
    CLUSTER_CREATE_RETRY_WAIT_SECONDS,
    CLUSTER_DELETE_WAIT_SECONDS,
    DEFAULT_BENCHMARK_IMAGE,
    DEFAULT_CLUSTER_CREATE_MAX_RETRIES,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_CLUSTER_WAIT,
    DEFAULT_FORWARD_PORT,
    DEFAULT_KVCACHE_DIR,
    DEFAULT_MODEL_NAME,
    DEFAULT_MODEL_PORT,
    DEPLOYMENT_READY_TIMEOUT_SECONDS,
    DEVICE_PLUGIN_RESTART_WAIT_SECONDS,
    GPU_CAPACITY_TIMEOUT_SECONDS,
    GPU_NAMESPACE_TIMEOUT_SECONDS,
    GPU_PODS_TIMEOUT_SECONDS,
    GPU_POLL_INTERVAL_SECONDS,
    MANIFESTS_DIR,
    NS_DEFAULT,
    NVKIND_KUBECONFIG_NAME,
    POD_POLL_INTERVAL_SECONDS,
    POD_RUNNING_TIMEOUT_SECONDS,
    PORT_FORWARD_LOG_FILE,
    PORT_FORWARD_PID_FILE,
    PORT_FORWARD_SETTLE_SECONDS,
    REL_CLUSTER_TEMPLATE,
    REL_RESULTS_DIR,
    REPO_DIR_NAME,
    SETUP_GRACE_PERIOD_SECONDS,
    dep_value,
)


# ============================================================================
# Configuration classes
# ============================================================================

class ClusterConfig(BaseSettings):
    """nvkind cluster configuration, auto-loaded from BENCH_* env vars.

    Attributes:
        cluster_name: Fallback cluster name when it cannot be derived from the
            control-plane container.
        config_template: nvkind config template, relative to the AIBrix repo.
        wait: Value passed to ``nvkind cluster create --wait``.
        max_retries: Maximum cluster creation attempts.
        retry_wait_seconds: Pause between cluster creation attempts.
        delete_wait_seconds: Pause after deleting a cluster.
        api_server_port: Container port of the Kubernetes API server.
        kubeconfig_path: Where the repaired kubeconfig is written.
        default_kubeconfig_path: kubectl's default kubeconfig location.
    """

    model_config = SettingsConfigDict(env_prefix="BENCH_", extra="ignore")

    cluster_name: str = DEFAULT_CLUSTER_NAME
    config_template: str = REL_CLUSTER_TEMPLATE
    wait: str = Field(default=DEFAULT_CLUSTER_WAIT, pattern=r"^\d+[smh]$")
    max_retries: int = Field(default=DEFAULT_CLUSTER_CREATE_MAX_RETRIES, ge=1, le=10)
    retry_wait_seconds: int = Field(default=CLUSTER_CREATE_RETRY_WAIT_SECONDS, ge=0)
    delete_wait_seconds: int = Field(default=CLUSTER_DELETE_WAIT_SECONDS, ge=0)
    api_server_port: int = Field(default=API_SERVER_PORT, ge=1, le=65535)
    kubeconfig_path: Path = Path.home() / NVKIND_KUBECONFIG_NAME
    default_kubeconfig_path: Path = Path.home() / ".kube" / "config"


class AibrixConfig(BaseSettings):
    """AIBrix checkout and tool download settings, auto-loaded from BENCH_* env vars.

    Attributes:
        aibrix_version: Release tag used for the kustomize overlays.
        aibrix_repo_url: Git URL of the AIBrix repository.
        work_dir: Directory holding the checkout, logs, and state files.
        nvkind_url: Release tarball for the nvkind binary.
        local_bin: Directory nvkind is installed into.
    """

    model_config = SettingsConfigDict(env_prefix="BENCH_", extra="ignore")

    aibrix_version: str = Field(default=dep_value("aibrix", "version"),
                                pattern=r"^v[\d.]+(-[\w.]+)?$")
    aibrix_repo_url: str = dep_value("aibrix", "repo")
    work_dir: Path = Field(default_factory=Path.cwd)
    nvkind_url: str = dep_value("nvkind", "url")
    local_bin: Path = Path.home() / ".local" / "bin"

    @property
    def repo_path(self) -> Path:
        return self.work_dir / REPO_DIR_NAME


class GpuConfig(BaseSettings):
    """GPU operator polling budgets, auto-loaded from BENCH_* env vars."""

    model_config = SettingsConfigDict(env_prefix="BENCH_GPU_", extra="ignore")

    namespace_timeout: int = Field(default=GPU_NAMESPACE_TIMEOUT_SECONDS, ge=0)
    pods_timeout: int = Field(default=GPU_PODS_TIMEOUT_SECONDS, ge=0)
    capacity_timeout: int = Field(default=GPU_CAPACITY_TIMEOUT_SECONDS, ge=0)
    poll_interval: int = Field(default=GPU_POLL_INTERVAL_SECONDS, ge=0)
    plugin_restart_wait: int = Field(default=DEVICE_PLUGIN_RESTART_WAIT_SECONDS, ge=0)


class ModelConfig(BaseSettings):
    """Model deployment settings, auto-loaded from BENCH_* env vars.

    Attributes:
        model_name: Deployment name and ``model.aibrix.ai/name`` label value.
        work_dir: Directory holding manifests, logs, and state files.
        namespace: Namespace the model is deployed into.
        api_key: API key the benchmark presents to the model endpoint.
        hf_token: HuggingFace token, stored in a secret when set.
        hf_token_secret: Name of the secret holding the HuggingFace token.
        forward_port: Local port forwarded to the model pod.
        model_port: Container port the model server listens on.
        kvcache_dir: Host directory for the KV cache socket.
        deploy_timeout: Seconds to wait for the deployment to be available.
        pod_timeout: Seconds to wait for the model pod to be Running.
        poll_interval: Seconds between pod phase checks.
        port_forward_settle_seconds: Pause after starting the port-forward.
    """

    model_config = SettingsConfigDict(env_prefix="BENCH_", extra="ignore", protected_namespaces=())

    model_name: str = Field(default=DEFAULT_MODEL_NAME, pattern=r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$")
    work_dir: Path = Field(default_factory=Path.cwd)
    namespace: str = NS_DEFAULT
    api_key: str = ""
    hf_token: str = ""
    forward_port: int = Field(default=DEFAULT_FORWARD_PORT, ge=1, le=65535)
    model_port: int = Field(default=DEFAULT_MODEL_PORT, ge=1, le=65535)
    hf_token_secret: str = "hf-token"
    kvcache_dir: Path = Path(DEFAULT_KVCACHE_DIR)
    deploy_timeout: int = Field(default=DEPLOYMENT_READY_TIMEOUT_SECONDS, ge=0)
    pod_timeout: int = Field(default=POD_RUNNING_TIMEOUT_SECONDS, ge=0)
    poll_interval: int = Field(default=POD_POLL_INTERVAL_SECONDS, ge=0)
    port_forward_settle_seconds: int = Field(default=PORT_FORWARD_SETTLE_SECONDS, ge=0)

    @property
    def benchmark_pid_file(self) -> Path:
        return self.work_dir / BENCHMARK_PID_FILE

    @property
    def port_forward_pid_file(self) -> Path:
        return self.work_dir / PORT_FORWARD_PID_FILE

    @property
    def port_forward_log(self) -> Path:
        return self.work_dir / PORT_FORWARD_LOG_FILE

    @property
    def results_dir(self) -> Path:
        return self.work_dir / REL_RESULTS_DIR

    @property
    def result_file(self) -> Path:
        return self.results_dir / f"{self.model_name}.jsonl"

    @property
    def manifest_path(self) -> Path:
        """Model manifest in the work dir, falling back to the packaged one."""
        local = self.work_dir / f"{self.model_name}.yaml"
        if local.exists():
            return local
        return MANIFESTS_DIR / f"{self.model_name}.yaml"


class BenchmarkConfig(BaseSettings):
    """Load generator settings, auto-loaded from BENCH_BENCHMARK_* env vars.

    The ``*_start``/``*_limit`` pairs bound the input length, output length,
    and request rate sweeps of the load generator.
    """

    model_config = SettingsConfigDict(env_prefix="BENCH_BENCHMARK_", extra="ignore")

    image: str = DEFAULT_BENCHMARK_IMAGE
    container_result_dir: str = BENCHMARK_RESULT_DIR
    input_start: int = Field(default=4, ge=1)
    input_limit: int = Field(default=8196, ge=1)
    output_start: int = Field(default=4, ge=1)
    output_limit: int = Field(default=2048, ge=1)
    rate_start: int = Field(default=1, ge=1)
    rate_limit: int = Field(default=64, ge=1)
    poll_interval: int = Field(default=BENCHMARK_POLL_INTERVAL_SECONDS, ge=0)


# ============================================================================
# Action flags
# ============================================================================

@dataclass(frozen=True)
class ActionFlags:
    """Single source of truth for which setup steps to perform."""

    check_requirements: bool = True
    install_dependencies: bool = True
    verify_installation: bool = True
    check_ports: bool = True
    create_cluster: bool = True
    fix_kubectl: bool = True
    setup_gpu_operator: bool = True
    install_aibrix: bool = True
    deploy_model: bool = True
    run_benchmark: bool = True
    wait_benchmark: bool = False
    cleanup: bool = True
    grace_period: int = SETUP_GRACE_PERIOD_SECONDS


@dataclass(frozen=True)
class ResolvedConfig:
    """All resolved configuration objects for one invocation."""

    cluster: ClusterConfig
    aibrix: AibrixConfig
    gpu: GpuConfig
    model: ModelConfig
    benchmark: BenchmarkConfig


# ============================================================================
# Config resolution
# ============================================================================

SettingsT = TypeVar("SettingsT", bound=BaseSettings)


def with_overrides(cfg: SettingsT, **update) -> SettingsT:
    """Return a copy of *cfg* with *update* applied and every field re-validated.

    Raises:
        pydantic.ValidationError: If an override violates a field constraint.
    """
    return type(cfg).model_validate({**cfg.model_dump(), **update})


def validate_flags(
    skip_cluster_creation: bool,
    skip_ports: bool,
    skip_deploy: bool,
    skip_benchmark: bool,
    wait_benchmark: bool,
) -> None:
    """Validate flag combinations. Raises typer.BadParameter on hard failures."""
    if wait_benchmark and skip_benchmark:
        raise typer.BadParameter("--wait-benchmark cannot be combined with --skip-benchmark")

    if skip_cluster_creation and not skip_ports:
        logger.warning("--skip-cluster-creation is set; port cleanup will keep existing clusters")

    if skip_deploy and not skip_benchmark:
        logger.warning("--skip-deploy is set; the benchmark expects a model pod that is already running")


def resolve_config(
    *,
    work_dir: Path | None = None,
    model_name: str | None = None,
    aibrix_version: str | None = None,
    max_retries: int | None = None,
    api_key: str | None = None,
    benchmark_image: str | None = None,
) -> ResolvedConfig:
    """Merge CLI > env > defaults and return resolved config objects."""
    cluster_cfg = ClusterConfig()
    aibrix_cfg = AibrixConfig()
    gpu_cfg = GpuConfig()
    model_cfg = ModelConfig()
    bench_cfg = BenchmarkConfig()

    # CLI overrides (CLI > env > default)
    if work_dir is not None:
        resolved = work_dir.expanduser().resolve()
        aibrix_cfg = with_overrides(aibrix_cfg, work_dir=resolved)
        model_cfg = with_overrides(model_cfg, work_dir=resolved)
    if model_name is not None:
        model_cfg = with_overrides(model_cfg, model_name=model_name)
    if aibrix_version is not None:
        aibrix_cfg = with_overrides(aibrix_cfg, aibrix_version=aibrix_version)
    if max_retries is not None:
        cluster_cfg = with_overrides(cluster_cfg, max_retries=max_retries)
    if api_key is not None:
        model_cfg = with_overrides(model_cfg, api_key=api_key)
    if benchmark_image is not None:
        bench_cfg = with_overrides(bench_cfg, image=benchmark_image)

    return ResolvedConfig(
        cluster=cluster_cfg,
        aibrix=aibrix_cfg,
        gpu=gpu_cfg,
        model=model_cfg,
        benchmark=bench_cfg,
    )


# ============================================================================
# Display
# ============================================================================

def display_config(flags: ActionFlags, cfg: ResolvedConfig) -> None:
    """Print only config relevant to requested actions."""
    console.print(Panel.fit("Configuration", style="bold blue"))

    console.print("[yellow]Workspace:[/yellow]")
    console.print(f"  work_dir        : {cfg.model.work_dir}")

    if flags.install_dependencies or flags.create_cluster or flags.install_aibrix:
        console.print("[yellow]AIBrix:[/yellow]")
        console.print(f"  version         : {cfg.aibrix.aibrix_version}")
        console.print(f"  repo_path       : {cfg.aibrix.repo_path}")

    if flags.create_cluster:
        console.print("[yellow]nvkind cluster:[/yellow]")
        console.print(f"  config_template : {cfg.cluster.config_template}")
        console.print(f"  max_retries     : {cfg.cluster.max_retries}")

    if flags.deploy_model or flags.run_benchmark:
        console.print("[yellow]Model:[/yellow]")
        console.print(f"  model_name      : {cfg.model.model_name}")
        console.print(f"  forward_port    : {cfg.model.forward_port}")

    if flags.run_benchmark:
        console.print("[yellow]Benchmark:[/yellow]")
        console.print(f"  image           : {cfg.benchmark.image}")
        console.print(f"  results         : {cfg.model.result_file}")
