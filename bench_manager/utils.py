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

"""Utility functions for kubectl, docker, polling, and command checks."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

import docker
import sh
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

T = TypeVar("T")


class DockerUnavailableError(RuntimeError):
    """Raised when the docker daemon cannot be reached."""


def command_exists(cmd: str) -> bool:
    """Return True if *cmd* resolves on the current PATH."""
    try:
        return sh.which(cmd) is not None
    except sh.ErrorReturnCode:
        return False


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    if not command_exists(cmd):
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.")


def run_kubectl(args: list[str], timeout: int = 30) -> tuple[bool, str, str]:
    """Run a kubectl command via subprocess and return (success, stdout, stderr).

    Uses subprocess instead of sh because callers branch on stderr content
    (``AlreadyExists``, ``NotFound``) and need it kept apart from stdout.

    Args:
        args: kubectl arguments (e.g. ``["get", "pods", "-n", "default"]``).
        timeout: Maximum seconds to wait for the command to complete.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    try:
        result = subprocess.run(
            ["kubectl", *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)


def kubectl_jsonpath(args: list[str], jsonpath: str, timeout: int = 30) -> str:
    """Run ``kubectl <args> -o jsonpath=<jsonpath>`` and return stripped stdout.

    Returns an empty string when the command fails, matching the behavior of
    an empty query result.
    """
    ok, stdout, _ = run_kubectl([*args, "-o", f"jsonpath={jsonpath}"], timeout=timeout)
    return stdout.strip() if ok else ""


def poll_until(probe: Callable[[], T], timeout: float, interval: float) -> T | None:
    """Call *probe* until it returns a truthy value or *timeout* elapses.

    Args:
        probe: Zero-argument callable; a falsy result means "not yet".
        timeout: Maximum seconds to keep polling. Zero means a single attempt.
        interval: Seconds to wait between attempts.

    Returns:
        The first truthy result, or None if the timeout was reached.
    """
    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda result: not result),
    )
    try:
        return retrying(probe)
    except RetryError:
        return None


@contextmanager
def docker_client() -> Iterator[docker.DockerClient]:
    """Yield a Docker client connected to the local daemon.

    Raises:
        DockerUnavailableError: If the daemon cannot be reached.
    """
    try:
        client = docker.from_env()
        client.ping()
    except docker.errors.DockerException as err:
        raise DockerUnavailableError("Docker is not running. Please start Docker and try again.") from err
    try:
        yield client
    finally:
        client.close()


def prepend_to_path(directory: Path) -> bool:
    """Prepend *directory* to this process's PATH if it is not already there.

    Returns:
        True if PATH was modified.
    """
    entries = os.environ.get("PATH", "").split(os.pathsep)
    if str(directory) in entries:
        return False
    os.environ["PATH"] = os.pathsep.join([str(directory), *entries])
    return True


def human_size(num_bytes: int) -> str:
    """Format a byte count the way ``du -h`` does (``4.0K``, ``12M``)."""
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" or size >= 10 else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"
