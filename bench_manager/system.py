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

"""Host environment validation: platform, docker resources, GPUs, disk."""

from __future__ import annotations

import os
import platform
from pathlib import Path

import psutil
import sh
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.constants import (
    MIN_DOCKER_CPUS,
    MIN_DOCKER_MEMORY_GB,
    MIN_FREE_DISK_GB,
    SUPPORTED_PLATFORMS,
)
from bench_manager.utils import command_exists, docker_client, human_size

_GIB = 1024 ** 3


def docker_resource_warnings(info: dict) -> list[str]:
    """Compare ``docker info`` resources against the recommended minimums.

    Args:
        info: Mapping returned by ``DockerClient.info()``.

    Returns:
        Warning messages, empty when the daemon has enough memory and CPUs.
    """
    warnings: list[str] = []
    mem_total = info.get("MemTotal")
    if mem_total and int(mem_total / _GIB) < MIN_DOCKER_MEMORY_GB:
        warnings.append(
            f"Docker has less than {MIN_DOCKER_MEMORY_GB}GB of memory allocated. This might cause issues."
        )
    cpus = info.get("NCPU")
    if cpus and cpus < MIN_DOCKER_CPUS:
        warnings.append(
            f"Docker has less than {MIN_DOCKER_CPUS} CPUs allocated. This might cause performance issues."
        )
    return warnings


def count_gpus() -> int | None:
    """Return the number of GPUs reported by ``nvidia-smi``, or None if unavailable."""
    if not command_exists("nvidia-smi"):
        return None
    try:
        output = str(sh.Command("nvidia-smi")("--list-gpus"))
    except sh.ErrorReturnCode:
        return 0
    return len([line for line in output.splitlines() if line.strip()])


def check_system_requirements(work_dir: Path) -> list[str]:
    """Validate the host before any provisioning happens.

    Hard failures (unsupported OS, docker missing or stopped) raise; soft
    problems are printed and returned so the caller can decide how to proceed.

    Args:
        work_dir: Directory whose filesystem must hold the checkout and models.

    Returns:
        Warning messages issued during the check.

    Raises:
        RuntimeError: On an unsupported platform or when docker is unusable.
    """
    console.print(Panel.fit("Checking system requirements", style="bold blue"))
    warnings: list[str] = []

    os_name = platform.system()
    if os_name not in SUPPORTED_PLATFORMS:
        raise RuntimeError(f"Only Linux and macOS are supported. Detected OS: {os_name}")

    if os.geteuid() != 0:
        warnings.append("Some operations may need sudo privileges; you might be prompted for your password.")

    if not command_exists("docker"):
        raise RuntimeError("Docker is not installed. Please install Docker and try again.")
    with docker_client() as client:
        warnings.extend(docker_resource_warnings(client.info()))

    gpu_count = count_gpus()
    if gpu_count is None:
        warnings.append("nvidia-smi is not available. GPU support may be limited or unavailable.")
    elif gpu_count == 0:
        warnings.append("No GPUs detected by nvidia-smi. GPU support may be limited or unavailable.")
    else:
        console.print(f"[green]\u2713 Detected {gpu_count} GPU(s)[/green]")

    for tool in ("nvkind", "kubectl"):
        if not command_exists(tool):
            warnings.append(f"{tool} is not installed. It will be installed during the setup process.")

    usage = psutil.disk_usage(str(work_dir))
    logger.info("Available disk space: %s", human_size(usage.free))
    if usage.free / 1000 ** 3 < MIN_FREE_DISK_GB:
        warnings.append(
            f"Less than {MIN_FREE_DISK_GB}GB of disk space available. This might not be enough for AIBrix and models."
        )

    for message in warnings:
        console.print(f"[yellow]\u26a0\ufe0f  {message}[/yellow]")
    console.print("[green]\u2705 System requirements check completed[/green]")
    return warnings
