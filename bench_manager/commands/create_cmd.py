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

"""Create subcommands (cluster)."""

from __future__ import annotations

from pathlib import Path

import typer

from bench_manager.cluster import create_cluster, fix_kubectl_config
from bench_manager.config import resolve_config

app = typer.Typer(help="Create infrastructure resources.")


@app.command()
def cluster(
    max_retries: int | None = typer.Option(None, "--max-retries", min=1, max=10, help="Cluster creation attempts"),
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding the AIBrix checkout"),
    fix_kubectl: bool = typer.Option(True, "--fix-kubectl/--no-fix-kubectl", help="Repair kubeconfig afterwards"),
) -> None:
    """Create a GPU-enabled nvkind cluster."""
    cfg = resolve_config(work_dir=work_dir, max_retries=max_retries)
    create_cluster(cfg.cluster, cfg.aibrix)
    if fix_kubectl:
        fix_kubectl_config(cfg.cluster)
