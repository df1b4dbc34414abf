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

"""Composite setup command: the full bring-up workflow."""

from __future__ import annotations

from pathlib import Path

import typer

from bench_manager import console
from bench_manager.config import ActionFlags, resolve_config, validate_flags
from bench_manager.constants import SETUP_GRACE_PERIOD_SECONDS
from bench_manager.orchestrator import run_setup


def setup(
    skip_requirements: bool = typer.Option(
        False, "--skip-requirements", help="Skip the host requirements check"),
    skip_install: bool = typer.Option(
        False, "--skip-install", help="Skip the AIBrix checkout and dependency install"),
    skip_verify: bool = typer.Option(
        False, "--skip-verify", help="Skip the installation verification script"),
    skip_ports: bool = typer.Option(
        False, "--skip-ports", help="Skip port reclamation"),
    skip_cluster_creation: bool = typer.Option(
        False, "--skip-cluster-creation", help="Reuse the existing nvkind cluster"),
    skip_kubectl_fix: bool = typer.Option(
        False, "--skip-kubectl-fix", help="Skip kubeconfig repair"),
    skip_gpu_operator: bool = typer.Option(
        False, "--skip-gpu-operator", help="Skip the NVIDIA GPU operator setup"),
    skip_aibrix: bool = typer.Option(
        False, "--skip-aibrix", help="Skip the AIBrix control plane install"),
    skip_deploy: bool = typer.Option(
        False, "--skip-deploy", help="Skip model deployment"),
    skip_benchmark: bool = typer.Option(
        False, "--skip-benchmark", help="Do not start the benchmark"),
    wait_benchmark: bool = typer.Option(
        False, "--wait-benchmark", help="Block until the benchmark finishes"),
    no_cleanup: bool = typer.Option(
        False, "--no-cleanup", help="Leave everything running and skip the cleanup prompts"),
    grace_period: int = typer.Option(
        SETUP_GRACE_PERIOD_SECONDS, "--grace-period", min=0, help="Seconds to wait before cleanup"),
    model_name: str | None = typer.Option(
        None, "--model", help="Model to deploy and benchmark"),
    work_dir: Path | None = typer.Option(
        None, "--work-dir", help="Directory for the checkout, logs, and state files"),
    aibrix_version: str | None = typer.Option(
        None, "--aibrix-version", help="AIBrix release tag"),
    max_retries: int | None = typer.Option(
        None, "--max-retries", min=1, max=10, help="Cluster creation attempts"),
    api_key: str | None = typer.Option(
        None, "--api-key", help="API key passed to the load generator"),
) -> None:
    """Full setup: nvkind cluster + GPU operator + AIBrix + model + benchmark.

    Use --skip-* flags to opt out of individual steps.
    """
    validate_flags(skip_cluster_creation, skip_ports, skip_deploy, skip_benchmark, wait_benchmark)
    flags = ActionFlags(
        check_requirements=not skip_requirements,
        install_dependencies=not skip_install,
        verify_installation=not skip_verify,
        check_ports=not skip_ports,
        create_cluster=not skip_cluster_creation,
        fix_kubectl=not skip_kubectl_fix,
        setup_gpu_operator=not skip_gpu_operator,
        install_aibrix=not skip_aibrix,
        deploy_model=not skip_deploy,
        run_benchmark=not skip_benchmark,
        wait_benchmark=wait_benchmark,
        cleanup=not no_cleanup,
        grace_period=grace_period,
    )
    cfg = resolve_config(
        work_dir=work_dir,
        model_name=model_name,
        aibrix_version=aibrix_version,
        max_retries=max_retries,
        api_key=api_key,
    )
    try:
        run_setup(flags, cfg)
    except KeyboardInterrupt:
        console.print("[yellow]Received interrupt signal. Exiting without automatic cleanup.[/yellow]")
        raise typer.Exit(1)
