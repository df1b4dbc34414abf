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

"""Idempotent reclamation of the host ports the stack publishes."""

from __future__ import annotations

import time
from collections.abc import Iterable

import docker
import psutil
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.cluster import delete_existing_clusters
from bench_manager.constants import (
    CLEANUP_PORTS,
    CLUSTER_DELETE_WAIT_SECONDS,
    CONTAINER_STOP_WAIT_SECONDS,
    PORT_RELEASE_WAIT_SECONDS,
    REQUIRED_PORTS,
)
from bench_manager.utils import DockerUnavailableError, docker_client


def _holds_port(conn) -> bool:
    """True for TCP listeners and bound UDP sockets, the entries ``ss -tulpn`` lists.

    Connection entries (ESTABLISHED, TIME_WAIT, ...) share the local port of a
    listener that may already be gone and do not block a new bind.
    """
    return bool(conn.laddr) and conn.status in (psutil.CONN_LISTEN, psutil.CONN_NONE)


def bound_sockets() -> list[tuple[int | None, int]]:
    """Return ``(pid, local_port)`` for every listening or bound inet socket.

    The system-wide table needs elevated privileges on macOS; without them
    each process owned by the current user is scanned instead. The pid is
    None when the owner is not visible to us.
    """
    try:
        return [
            (conn.pid, conn.laddr.port)
            for conn in psutil.net_connections(kind="inet") if _holds_port(conn)
        ]
    except psutil.AccessDenied:
        pass
    sockets: list[tuple[int | None, int]] = []
    for proc in psutil.process_iter():
        try:
            sockets.extend(
                (proc.pid, conn.laddr.port)
                for conn in proc.net_connections(kind="inet") if _holds_port(conn)
            )
        except (psutil.AccessDenied, psutil.NoSuchProcess):
            continue
    return sockets


def port_in_use(port: int) -> bool:
    """Return True if any local socket is bound to *port*."""
    return any(local_port == port for _, local_port in bound_sockets())


def pids_on_port(port: int) -> set[int]:
    """Return the PIDs of processes with a local socket bound to *port*."""
    return {pid for pid, local_port in bound_sockets() if local_port == port and pid}


def kill_port_owners(port: int) -> bool:
    """SIGKILL every process bound to *port* and report whether it was freed.

    Returns:
        True if the port is free afterwards.
    """
    pids = pids_on_port(port)
    if not pids:
        console.print(f"[green]  \u2713 Port {port} is already available[/green]")
        return True

    console.print(f"[yellow]   Port {port} is in use by {sorted(pids)}. Forcefully terminating...[/yellow]")
    for pid in pids:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            logger.warning("No permission to kill PID %d on port %d", pid, port)

    time.sleep(PORT_RELEASE_WAIT_SECONDS)
    if port_in_use(port):
        console.print(f"[yellow]\u26a0\ufe0f  Failed to free up port {port}. This might cause issues.[/yellow]")
        return False
    console.print(f"[green]  \u2713 Freed up port {port}[/green]")
    return True


def containers_publishing(client: docker.DockerClient, port: int) -> list:
    """Return running containers that publish *port* on the host."""
    return client.containers.list(filters={"publish": str(port)})


def stop_port_containers(ports: Iterable[int]) -> int:
    """Stop docker containers publishing any of *ports*.

    Returns:
        Number of containers stopped. Zero when docker is unreachable.
    """
    stopped = 0
    try:
        with docker_client() as client:
            for port in ports:
                for container in containers_publishing(client, port):
                    console.print(
                        f"[yellow]   Docker container {container.short_id} is using port {port}. Stopping...[/yellow]"
                    )
                    container.stop()
                    stopped += 1
                    time.sleep(CONTAINER_STOP_WAIT_SECONDS)
    except DockerUnavailableError as e:
        console.print(f"[yellow]\u26a0\ufe0f  Skipping docker container check: {e}[/yellow]")
    return stopped


def force_cleanup_ports(ports: Iterable[int] = CLEANUP_PORTS, delete_clusters: bool = True) -> None:
    """Free every managed port, whoever holds it.

    Kills processes bound to the ports, stops containers publishing them, and
    optionally deletes any running nvkind cluster. Running it twice is harmless.

    Args:
        ports: Host ports to reclaim.
        delete_clusters: Whether existing nvkind clusters are deleted too.
    """
    ports = tuple(ports)
    console.print(Panel.fit("Cleaning up required ports", style="bold blue"))
    for port in ports:
        kill_port_owners(port)

    console.print("[yellow]\u2139\ufe0f  Checking for Docker containers using required ports...[/yellow]")
    stop_port_containers(ports)

    if delete_clusters:
        console.print("[yellow]\u2139\ufe0f  Checking for existing nvkind clusters...[/yellow]")
        delete_existing_clusters(CLUSTER_DELETE_WAIT_SECONDS)
    console.print("[green]\u2705 Port cleanup completed[/green]")


def check_required_ports(ports: Iterable[int] = REQUIRED_PORTS, delete_clusters: bool = True) -> None:
    """Reclaim the managed ports and verify the required ones are free.

    Args:
        ports: Ports that must be free after cleanup.
        delete_clusters: Whether existing nvkind clusters may be deleted.

    Raises:
        RuntimeError: If a required port is still held by a process or container.
    """
    ports = tuple(ports)
    force_cleanup_ports(CLEANUP_PORTS, delete_clusters=delete_clusters)

    console.print(Panel.fit("Checking required ports", style="bold blue"))
    for port in ports:
        pids = pids_on_port(port)
        if pids:
            raise RuntimeError(
                f"Port {port} is still in use by process {sorted(pids)} even after cleanup. Please check manually."
            )
        console.print(f"[green]  \u2713 Port {port} is available[/green]")

    try:
        with docker_client() as client:
            for port in ports:
                for container in containers_publishing(client, port):
                    raise RuntimeError(
                        f"Docker container {container.short_id} is still using port {port} even after cleanup. "
                        "Please check manually."
                    )
    except DockerUnavailableError as e:
        console.print(f"[yellow]\u26a0\ufe0f  Skipping docker container check: {e}[/yellow]")
    console.print("[green]\u2705 All required ports are available[/green]")
