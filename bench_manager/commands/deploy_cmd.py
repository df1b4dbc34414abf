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

"""Deploy subcommands (model)."""

from __future__ import annotations

from pathlib import Path

import typer

from bench_manager.components import deploy_model
from bench_manager.config import resolve_config

app = typer.Typer(help="Deploy workloads.")


@app.command()
def model(
    model_name: str | None = typer.Option(None, "--model", help="Model to deploy"),
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory for manifests and state files"),
) -> None:
    """Deploy the model, wait for its pod, and forward it to localhost."""
    cfg = resolve_config(work_dir=work_dir, model_name=model_name)
    deploy_model(cfg.model, cfg.gpu)
