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

"""Delete subcommands (cluster)."""

from __future__ import annotations

import typer

from bench_manager.cluster import delete_cluster
from bench_manager.config import ClusterConfig, with_overrides

app = typer.Typer(help="Delete infrastructure resources.")


@app.command()
def cluster(
    settle_seconds: int | None = typer.Option(None, "--settle-seconds", min=0, help="Pause after the nvkind delete"),
) -> None:
    """Delete the nvkind cluster, leftover containers, and dangling volumes."""
    cluster_cfg = ClusterConfig()
    if settle_seconds is not None:
        cluster_cfg = with_overrides(cluster_cfg, delete_wait_seconds=settle_seconds)
    delete_cluster(cluster_cfg.delete_wait_seconds)
