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

"""Interactive teardown of background processes, the cluster, and ports."""

from __future__ import annotations

import typer
from rich.panel import Panel

from bench_manager import console
from bench_manager.cluster import delete_cluster
from bench_manager.config import ClusterConfig, ModelConfig
from bench_manager.ports import force_cleanup_ports
from bench_manager.state import PidFile


def _stop(pid_file: PidFile, what: str) -> None:
    if not pid_file.exists():
        return
    console.print(f"[yellow]\u2139\ufe0f  Stopping {what}...[/yellow]")
    pid_file.terminate()
    console.print(f"[green]  \u2713 {what.capitalize()} stopped[/green]")


def cleanup(
    model_cfg: ModelConfig,
    cluster_cfg: ClusterConfig,
    *,
    perform: bool | None = None,
    delete: bool | None = None,
) -> bool:
    """Stop background processes, optionally delete the cluster, and free ports.

    Args:
        model_cfg: Model configuration locating the PID files.
        cluster_cfg: Cluster configuration used for the delete.
        perform: Answer to "perform cleanup?"; prompts when None.
        delete: Answer to "delete the cluster?"; prompts when None.

    Returns:
        False if the user chose to keep everything running.
    """
    console.print(Panel.fit("Cleanup", style="bold blue"))
    benchmark_pid = PidFile(model_cfg.benchmark_pid_file)

    if perform is None:
        perform = typer.confirm(
            "Do you want to perform cleanup? This will stop port forwarding but keep the cluster running."
        )
    if not perform:
        console.print("[yellow]\u2139\ufe0f  Cleanup skipped. The model deployment and port forwarding will continue to run.[/yellow]")
        console.print(f"[yellow]\u2139\ufe0f  You can access the model at localhost:{model_cfg.forward_port}[/yellow]")
        if benchmark_pid.exists():
            console.print(
                "[yellow]\u2139\ufe0f  Benchmark is running in the background. You can monitor it with: "
                f"tail -f {model_cfg.work_dir}/{model_cfg.model_name}-*.log[/yellow]"
            )
        console.print("[yellow]\u2139\ufe0f  To clean up later, run: bench-manager cleanup[/yellow]")
        return False

    _stop(benchmark_pid, "benchmark process")
    _stop(PidFile(model_cfg.port_forward_pid_file), "port forwarding")

    if delete is None:
        delete = typer.confirm(
            "Do you want to delete the Kubernetes cluster? This will remove all deployed models and resources."
        )
    if delete:
        delete_cluster(cluster_cfg.delete_wait_seconds)
    else:
        console.print(
            "[yellow]\u2139\ufe0f  Kubernetes cluster is still running. You can delete it later with: "
            "bench-manager delete cluster[/yellow]"
        )

    console.print("[yellow]\u2139\ufe0f  Forcefully cleaning up all ports for the next run...[/yellow]")
    force_cleanup_ports(delete_clusters=delete)
    console.print("[green]\u2705 Cleanup completed[/green]")
    return True
