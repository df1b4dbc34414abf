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

"""Install subcommands (deps, aibrix, gpu-operator)."""

from __future__ import annotations

from pathlib import Path

import typer

from bench_manager.components import install_aibrix
from bench_manager.config import resolve_config
from bench_manager.gpu import setup_gpu_operator
from bench_manager.installer import install_dependencies, verify_installation

app = typer.Typer(help="Install components.")


@app.command()
def deps(
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory for the AIBrix checkout"),
    verify: bool = typer.Option(True, "--verify/--no-verify", help="Run the verification script afterwards"),
) -> None:
    """Clone AIBrix, run its host install script, and install nvkind."""
    cfg = resolve_config(work_dir=work_dir)
    install_dependencies(cfg.aibrix)
    if verify:
        verify_installation(cfg.aibrix)


@app.command()
def aibrix(
    version: str | None = typer.Option(None, "--version", help="AIBrix release tag"),
) -> None:
    """Install the AIBrix dependency and release kustomizations."""
    cfg = resolve_config(aibrix_version=version)
    install_aibrix(cfg.aibrix)


@app.command("gpu-operator")
def gpu_operator(
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding the AIBrix checkout"),
) -> None:
    """Install the NVIDIA GPU operator and wait for GPUs to be advertised."""
    cfg = resolve_config(work_dir=work_dir)
    setup_gpu_operator(cfg.gpu, cfg.aibrix)
