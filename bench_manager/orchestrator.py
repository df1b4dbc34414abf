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

"""Orchestration of the full bring-up: host checks through benchmark launch."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.benchmark import run_benchmark, wait_for_benchmark
from bench_manager.cleanup import cleanup
from bench_manager.cluster import create_cluster, fix_kubectl_config
from bench_manager.components import deploy_model, install_aibrix
from bench_manager.config import ActionFlags, ResolvedConfig, display_config
from bench_manager.gpu import setup_gpu_operator
from bench_manager.installer import install_dependencies, verify_installation
from bench_manager.ports import check_required_ports
from bench_manager.state import PidFile
from bench_manager.system import check_system_requirements


@dataclass(frozen=True)
class Step:
    """One stage of the setup workflow.

    Attributes:
        name: Short name used in log lines.
        action: Zero-argument callable performing the stage.
        fatal: Whether a failure aborts the workflow.
        failure_message: What the user is told when the stage fails.
    """

    name: str
    action: Callable[[], object]
    fatal: bool
    failure_message: str


# ============================================================================
# Step table
# ============================================================================

def build_steps(flags: ActionFlags, cfg: ResolvedConfig) -> list[Step]:
    """Return the enabled provisioning steps in execution order.

    The benchmark launch is not included; see :func:`benchmark_step`.
    """
    candidates = [
        (flags.check_requirements, Step(
            "check-requirements", lambda: check_system_requirements(cfg.aibrix.work_dir), False,
            "System requirements check had issues. Proceeding anyway...")),
        (flags.install_dependencies, Step(
            "install-dependencies", lambda: install_dependencies(cfg.aibrix), False,
            "Failed to install dependencies. Attempting to continue...")),
        (flags.verify_installation, Step(
            "verify-installation", lambda: verify_installation(cfg.aibrix), False,
            "Installation verification failed. Attempting to continue...")),
        (flags.check_ports, Step(
            "check-ports", lambda: check_required_ports(delete_clusters=flags.create_cluster), True,
            "Required ports check failed. Please fix the issues and try again.")),
        (flags.create_cluster, Step(
            "create-cluster", lambda: create_cluster(cfg.cluster, cfg.aibrix), True,
            "Failed to create Kubernetes cluster. Please check the logs and try again.")),
        (flags.fix_kubectl, Step(
            "fix-kubectl", lambda: fix_kubectl_config(cfg.cluster), False,
            "Failed to fix kubectl configuration. Attempting to continue anyway...")),
        (flags.setup_gpu_operator, Step(
            "gpu-operator", lambda: setup_gpu_operator(cfg.gpu, cfg.aibrix), False,
            "GPU operator setup may have issues. Attempting to continue...")),
        (flags.install_aibrix, Step(
            "install-aibrix", lambda: install_aibrix(cfg.aibrix), False,
            "AIBrix installation may have issues. Attempting to continue...")),
        (flags.deploy_model, Step(
            "deploy-model", lambda: deploy_model(cfg.model, cfg.gpu), False,
            "Model deployment may have issues. Please check the logs.")),
    ]
    return [step for enabled, step in candidates if enabled]


def benchmark_step(cfg: ResolvedConfig) -> Step:
    return Step(
        "run-benchmark", lambda: run_benchmark(cfg.model, cfg.benchmark), True,
        "Failed to start the benchmark.",
    )


def run_steps(steps: list[Step]) -> None:
    """Execute *steps* in order.

    Non-fatal failures are reported and the workflow continues.

    Raises:
        RuntimeError: When a fatal step fails.
    """
    for step in steps:
        logger.info("Running step: %s", step.name)
        try:
            step.action()
        except Exception as err:
            if step.fatal:
                raise RuntimeError(f"{step.failure_message} ({err})") from err
            logger.debug("Step %s failed", step.name, exc_info=True)
            console.print(f"[yellow]\u26a0\ufe0f  {err}[/yellow]")
            console.print(f"[yellow]\u26a0\ufe0f  {step.failure_message}[/yellow]")


# ============================================================================
# Public API
# ============================================================================

def _print_benchmark_hints(cfg: ResolvedConfig) -> None:
    if not PidFile(cfg.model.benchmark_pid_file).exists():
        return
    console.print("[yellow]\u2139\ufe0f  Benchmark is running in the background.[/yellow]")
    console.print("[yellow]\u2139\ufe0f  Check its status with: bench-manager check-benchmark[/yellow]")
    console.print("[yellow]\u2139\ufe0f  Wait for it to complete with: bench-manager wait-benchmark[/yellow]")


def run_setup(flags: ActionFlags, cfg: ResolvedConfig) -> None:
    """Run the full workflow: host checks, cluster, GPU operator, AIBrix, model, benchmark.

    Args:
        flags: Which steps to run and how to finish.
        cfg: Resolved configuration for every step.

    Raises:
        RuntimeError: If a fatal step fails. Cleanup is offered first unless
            disabled.
    """
    display_config(flags, cfg)
    console.print(Panel.fit(f"Starting AIBrix setup for {cfg.model.model_name}", style="bold blue"))

    try:
        run_steps(build_steps(flags, cfg))
        if flags.deploy_model:
            console.print(
                f"[green]\u2705 AIBrix setup with {cfg.model.model_name} model completed. "
                f"The model is accessible at localhost:{cfg.model.forward_port}[/green]"
            )
        if flags.run_benchmark:
            run_steps([benchmark_step(cfg)])
    except RuntimeError:
        if flags.cleanup:
            console.print("[red]Setup failed. Starting controlled cleanup...[/red]")
            cleanup(cfg.model, cfg.cluster)
        raise

    _print_benchmark_hints(cfg)
    if flags.wait_benchmark:
        wait_for_benchmark(cfg.model, cfg.benchmark)
    if not flags.cleanup:
        return

    console.print("[yellow]\u2139\ufe0f  Press Ctrl+C to exit without cleanup, or let the command continue to the cleanup phase.[/yellow]")
    console.print(f"[yellow]\u2139\ufe0f  Waiting {flags.grace_period} seconds before proceeding to cleanup phase...[/yellow]")
    time.sleep(flags.grace_period)
    cleanup(cfg.model, cfg.cluster)
