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

"""Background benchmark runner with status and wait reporting."""

from __future__ import annotations

import shlex
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from pathlib import Path

from rich.panel import Panel

from bench_manager import console
from bench_manager.components import ensure_port_forward
from bench_manager.config import BenchmarkConfig, ModelConfig
from bench_manager.constants import (
    BENCHMARK_DONE_MARKER,
    BENCHMARK_ENTRYPOINT,
    BENCHMARK_RUN_MARKER,
    LOG_TIMESTAMP_FORMAT,
)
from bench_manager.state import PidFile
from bench_manager.utils import human_size


class BenchmarkState(IntEnum):
    """Benchmark lifecycle state; the value doubles as the CLI exit code."""

    RUNNING = 0
    NOT_FOUND = 1
    FINISHED = 2


@dataclass
class LogSummary:
    """What a benchmark log says about the run so far."""

    path: Path
    size: str
    completed_runs: int
    finished: bool
    tail: list[str] = field(default_factory=list)


# ============================================================================
# Log and result inspection
# ============================================================================

def latest_log(model_cfg: ModelConfig) -> Path | None:
    """Return the most recently modified ``<model>-*.log`` in the work dir."""
    logs = list(model_cfg.work_dir.glob(f"{model_cfg.model_name}-*.log"))
    if not logs:
        return None
    return max(logs, key=lambda p: p.stat().st_mtime)


def summarize_log(path: Path, tail_lines: int = 5) -> LogSummary:
    """Count completed runs, detect completion, and keep the last non-empty lines."""
    lines = path.read_text(errors="replace").splitlines()
    return LogSummary(
        path=path,
        size=human_size(path.stat().st_size),
        completed_runs=sum(BENCHMARK_RUN_MARKER in line for line in lines),
        finished=any(BENCHMARK_DONE_MARKER in line for line in lines),
        tail=[line for line in lines[-tail_lines:] if line.strip()],
    )


def _print_results(result_file: Path, sample_lines: int = 3) -> None:
    if not result_file.exists():
        console.print(f"[yellow]\u2139\ufe0f  No results file found at {result_file}[/yellow]")
        return
    console.print(
        f"[green]  \u2713 Results file created: {result_file} (Size: {human_size(result_file.stat().st_size)})[/green]"
    )
    console.print("[yellow]\u2139\ufe0f  Sample of benchmark results:[/yellow]")
    with open(result_file, errors="replace") as f:
        for _, line in zip(range(sample_lines), f):
            console.print(line.rstrip("\n"), markup=False)


def _print_final_report(model_cfg: ModelConfig, log: Path | None) -> None:
    if log is None:
        console.print("[yellow]\u26a0\ufe0f  No log file found. The benchmark may not have generated any output.[/yellow]")
        return
    summary = summarize_log(log)
    if summary.finished:
        console.print("[green]\u2705 Benchmark completed successfully![/green]")
    else:
        console.print(
            "[yellow]\u26a0\ufe0f  Benchmark may have terminated unexpectedly. Check the log file for errors.[/yellow]"
        )
    console.print(f"[yellow]\u2139\ufe0f  Log file: {summary.path} (Size: {summary.size})[/yellow]")
    console.print("[yellow]\u2139\ufe0f  Last few lines of the log:[/yellow]")
    for line in summary.tail:
        console.print(line, markup=False)
    _print_results(model_cfg.result_file)
    console.print(f"[yellow]\u2139\ufe0f  Total completed benchmark runs: {summary.completed_runs}[/yellow]")


# ============================================================================
# Commands
# ============================================================================

def build_benchmark_command(model_cfg: ModelConfig, bench_cfg: BenchmarkConfig) -> list[str]:
    """Build the ``docker run`` invocation of the load generator."""
    model = model_cfg.model_name
    result_dir = bench_cfg.container_result_dir
    script = shlex.join([
        BENCHMARK_ENTRYPOINT,
        "-m", model,
        "-o", model,
        "--input-start", str(bench_cfg.input_start),
        "--input-limit", str(bench_cfg.input_limit),
        "--output-start", str(bench_cfg.output_start),
        "--output-limit", str(bench_cfg.output_limit),
        "--rate-start", str(bench_cfg.rate_start),
        "--rate-limit", str(bench_cfg.rate_limit),
        "--output", f"{result_dir}/{model}.jsonl",
    ])
    return [
        "docker", "run", "--rm", "--network=host",
        "-v", f"{model_cfg.results_dir}:{result_dir}",
        "-e", f"MODEL_NAME={model}",
        "-e", f"LLM_API_KEY={model_cfg.api_key}",
        "-e", f"LLM_API_BASE=http://localhost:{model_cfg.forward_port}",
        "--entrypoint", "bash",
        bench_cfg.image,
        "-c", script,
    ]


def run_benchmark(model_cfg: ModelConfig, bench_cfg: BenchmarkConfig) -> int:
    """Start the load generator in the background against the forwarded model.

    Args:
        model_cfg: Model configuration with the work dir and forward port.
        bench_cfg: Load generator image and sweep bounds.

    Returns:
        PID of the background ``docker run`` process.

    Raises:
        RuntimeError: If the model cannot be reached on the forward port.
    """
    console.print(Panel.fit("Running benchmark", style="bold blue"))
    timestamp = datetime.now().strftime(LOG_TIMESTAMP_FORMAT)
    log_file = model_cfg.work_dir / f"{model_cfg.model_name}-{timestamp}.log"
    log_file.touch()
    log_file.chmod(0o666)

    ensure_port_forward(model_cfg)
    model_cfg.results_dir.mkdir(parents=True, exist_ok=True)

    with open(log_file, "ab") as log:
        proc = subprocess.Popen(
            build_benchmark_command(model_cfg, bench_cfg),
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    PidFile(model_cfg.benchmark_pid_file).write(proc.pid)

    console.print(f"[green]\u2705 Benchmark started in background (PID: {proc.pid})[/green]")
    console.print(f"[yellow]\u2139\ufe0f  Log file: {log_file}[/yellow]")
    console.print(f"[yellow]\u2139\ufe0f  Results will be saved to: {model_cfg.result_file}[/yellow]")
    return proc.pid


def check_benchmark_status(model_cfg: ModelConfig) -> BenchmarkState:
    """Report on the background benchmark without waiting for it.

    A finished benchmark's PID file is removed.
    """
    console.print(Panel.fit("Checking benchmark status", style="bold blue"))
    pid_file = PidFile(model_cfg.benchmark_pid_file)
    if not pid_file.exists():
        console.print(
            "[yellow]\u2139\ufe0f  No benchmark process found. It may not have started or has already completed.[/yellow]"
        )
        return BenchmarkState.NOT_FOUND

    log = latest_log(model_cfg)
    if not pid_file.is_running():
        console.print("[yellow]\u2139\ufe0f  Benchmark process is not running. It has completed or was terminated.[/yellow]")
        _print_final_report(model_cfg, log)
        pid_file.remove()
        return BenchmarkState.FINISHED

    console.print(f"[green]  \u2713 Benchmark process (PID: {pid_file.read()}) is still running[/green]")
    if log is None:
        console.print("[yellow]\u2139\ufe0f  No log file found. The benchmark may have just started.[/yellow]")
        return BenchmarkState.RUNNING

    summary = summarize_log(log, tail_lines=10)
    console.print(f"[yellow]\u2139\ufe0f  Current log file: {summary.path} (Size: {summary.size})[/yellow]")
    console.print("[yellow]\u2139\ufe0f  Recent benchmark activity:[/yellow]")
    for line in summary.tail[:5]:
        console.print(line, markup=False)
    console.print(f"[yellow]\u2139\ufe0f  Completed benchmark runs so far: {summary.completed_runs}[/yellow]")
    result_file = model_cfg.result_file
    if result_file.exists():
        console.print(
            f"[yellow]\u2139\ufe0f  Results file exists: {result_file} (Size: {human_size(result_file.stat().st_size)})[/yellow]"
        )
    else:
        console.print("[yellow]\u2139\ufe0f  Results file not created yet[/yellow]")
    console.print(f"[yellow]\u2139\ufe0f  To monitor the benchmark in real-time, run: tail -f {summary.path}[/yellow]")
    return BenchmarkState.RUNNING


def wait_for_benchmark(model_cfg: ModelConfig, bench_cfg: BenchmarkConfig) -> BenchmarkState:
    """Block until the background benchmark exits, printing progress periodically.

    Interrupting the wait leaves the benchmark running.
    """
    console.print(Panel.fit("Waiting for benchmark to complete", style="bold blue"))
    pid_file = PidFile(model_cfg.benchmark_pid_file)
    if not pid_file.exists():
        console.print(
            "[yellow]\u2139\ufe0f  No benchmark process found. It may not have started or has already completed.[/yellow]"
        )
        return BenchmarkState.NOT_FOUND
    log = latest_log(model_cfg)
    if log is None:
        console.print("[yellow]\u26a0\ufe0f  No log file found. Cannot monitor benchmark progress.[/yellow]")
        return BenchmarkState.NOT_FOUND

    console.print(
        "[yellow]\u2139\ufe0f  Monitoring benchmark progress. Press Ctrl+C to stop monitoring "
        "(benchmark will continue running).[/yellow]"
    )
    console.print(f"[yellow]\u2139\ufe0f  Log file: {log}[/yellow]")
    console.print(f"[yellow]\u2139\ufe0f  Results will be saved to: {model_cfg.result_file}[/yellow]")

    while pid_file.is_running():
        summary = summarize_log(log)
        console.print(f"--- Current benchmark progress ({datetime.now():%Y-%m-%d %H:%M:%S}) ---")
        for line in summary.tail:
            console.print(line, markup=False)
        console.print(f"Completed benchmark runs so far: {summary.completed_runs}")
        if model_cfg.result_file.exists():
            console.print(f"Results file size: {human_size(model_cfg.result_file.stat().st_size)}")
        else:
            console.print("Results file not created yet")
        console.print(f"Checking again in {bench_cfg.poll_interval} seconds... (Press Ctrl+C to stop monitoring)")
        time.sleep(bench_cfg.poll_interval)

    console.print("[green]  \u2713 Benchmark process has completed[/green]")
    _print_final_report(model_cfg, log)
    pid_file.remove()
    return BenchmarkState.FINISHED
