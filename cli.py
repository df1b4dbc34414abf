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

"""
cli.py - Unified CLI for the GPU benchmark environment.

Subcommands:
    setup            Full workflow: nvkind cluster, GPU operator, AIBrix, model, benchmark
    cleanup          Stop background processes, optionally delete the cluster, free ports
    check-benchmark  Report benchmark progress (exit 0 running, 1 not found, 2 finished)
    wait-benchmark   Block until the benchmark finishes
    run-benchmark    Start the benchmark against an already deployed model
    fix-kubectl      Rebuild the kubeconfig from the control-plane container
    create           Create infrastructure resources (cluster)
    delete           Delete infrastructure resources (cluster)
    install          Install components (deps, aibrix, gpu-operator)
    deploy           Deploy workloads (model)

Examples:
    # Full setup with the default model
    bench-manager setup

    # Reuse an existing cluster and keep everything running afterwards
    bench-manager setup --skip-cluster-creation --skip-ports --no-cleanup

    # Check on the background benchmark
    bench-manager check-benchmark

For detailed usage information, run: bench-manager --help
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer

from bench_manager import console
from bench_manager.benchmark import BenchmarkState, check_benchmark_status, run_benchmark, wait_for_benchmark
from bench_manager.cleanup import cleanup
from bench_manager.cluster import fix_kubectl_config
from bench_manager.commands import (
    create_cmd,
    delete_cmd,
    deploy_cmd,
    install_cmd,
    setup_cmd,
)
from bench_manager.config import ClusterConfig, resolve_config

app = typer.Typer(
    help="Unified CLI for the GPU benchmark environment.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command("setup")(setup_cmd.setup)
app.add_typer(create_cmd.app, name="create")
app.add_typer(delete_cmd.app, name="delete")
app.add_typer(install_cmd.app, name="install")
app.add_typer(deploy_cmd.app, name="deploy")


@app.command("cleanup")
def cleanup_cmd(
    yes: bool = typer.Option(False, "--yes", "-y", help="Perform cleanup without asking"),
    delete_cluster: bool | None = typer.Option(
        None, "--delete-cluster/--keep-cluster", help="Delete the cluster without asking"),
    model_name: str | None = typer.Option(None, "--model", help="Model whose PID files are used"),
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding the state files"),
) -> None:
    """Stop the benchmark and port-forward, optionally delete the cluster, free ports."""
    cfg = resolve_config(work_dir=work_dir, model_name=model_name)
    cleanup(cfg.model, cfg.cluster, perform=True if yes else None, delete=delete_cluster)


@app.command("check-benchmark")
def check_benchmark(
    model_name: str | None = typer.Option(None, "--model", help="Model being benchmarked"),
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding logs and state files"),
) -> None:
    """Report benchmark progress. Exit code: 0 running, 1 not found, 2 finished."""
    cfg = resolve_config(work_dir=work_dir, model_name=model_name)
    raise typer.Exit(int(check_benchmark_status(cfg.model)))


@app.command("wait-benchmark")
def wait_benchmark(
    model_name: str | None = typer.Option(None, "--model", help="Model being benchmarked"),
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding logs and state files"),
) -> None:
    """Block until the benchmark finishes, printing progress periodically."""
    cfg = resolve_config(work_dir=work_dir, model_name=model_name)
    state = wait_for_benchmark(cfg.model, cfg.benchmark)
    raise typer.Exit(0 if state == BenchmarkState.FINISHED else 1)


@app.command("run-benchmark")
def run_benchmark_cmd(
    model_name: str | None = typer.Option(None, "--model", help="Model to benchmark"),
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory for logs and results"),
    api_key: str | None = typer.Option(None, "--api-key", help="API key passed to the load generator"),
) -> None:
    """Start the benchmark against an already deployed model."""
    cfg = resolve_config(work_dir=work_dir, model_name=model_name, api_key=api_key)
    run_benchmark(cfg.model, cfg.benchmark)


@app.command("fix-kubectl")
def fix_kubectl() -> None:
    """Rebuild the kubeconfig from the nvkind control-plane container."""
    if not fix_kubectl_config(ClusterConfig()):
        raise typer.Exit(1)


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
