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

"""nvkind cluster lifecycle and kubeconfig repair."""

from __future__ import annotations

import os
import re
import time
from pathlib import Path

import docker
import sh
import yaml
from rich.panel import Panel
from tenacity import RetryCallState, retry, stop_after_attempt, wait_fixed

from bench_manager import console, logger
from bench_manager.config import AibrixConfig, ClusterConfig
from bench_manager.constants import (
    ADMIN_KUBECONFIG,
    CONTAINER_REMOVE_WAIT_SECONDS,
    CONTROL_PLANE_NAME_FILTER,
    DEFAULT_API_HOST,
    KIND_CONTAINER_PATTERN,
    NO_CLUSTERS_MESSAGE,
)
from bench_manager.installer import ensure_nvkind
from bench_manager.system import docker_resource_warnings
from bench_manager.utils import command_exists, docker_client, run_kubectl


# ============================================================================
# Existing clusters and containers
# ============================================================================

def list_clusters() -> list[str]:
    """Return the names reported by ``nvkind cluster list``."""
    try:
        output = str(sh.nvkind("cluster", "list"))
    except sh.ErrorReturnCode:
        return []
    return [
        line.strip() for line in output.splitlines()
        if line.strip() and NO_CLUSTERS_MESSAGE not in line
    ]


def delete_existing_clusters(settle_seconds: int) -> bool:
    """Delete any nvkind cluster that is already running.

    Args:
        settle_seconds: Pause after the delete so docker releases resources.

    Returns:
        True if a cluster was found and a delete was issued.
    """
    if not command_exists("nvkind") or not list_clusters():
        return False
    console.print("[yellow]\u2139\ufe0f  Existing nvkind clusters found. Deleting them...[/yellow]")
    try:
        sh.nvkind("cluster", "delete")
    except sh.ErrorReturnCode as e:
        logger.warning("nvkind cluster delete failed: %s", e.stderr.decode(errors="replace").strip())
    time.sleep(settle_seconds)
    return True


def _is_kind_container(container) -> bool:
    image = container.attrs.get("Config", {}).get("Image", "")
    return bool(re.search(KIND_CONTAINER_PATTERN, f"{container.name} {image}"))


def remove_kind_containers(client: docker.DockerClient) -> int:
    """Force-remove every container whose name or image mentions kind/nvkind.

    Returns:
        Number of containers removed.
    """
    removed = 0
    for container in client.containers.list(all=True):
        if not _is_kind_container(container):
            continue
        try:
            container.remove(force=True)
            removed += 1
        except docker.errors.NotFound:
            pass
        except docker.errors.APIError as e:
            console.print(f"[yellow]\u26a0\ufe0f  Failed to remove container {container.name}: {e}[/yellow]")
    return removed


# ============================================================================
# Cluster operations
# ============================================================================

def _cluster_template(cluster_cfg: ClusterConfig, aibrix_cfg: AibrixConfig) -> Path:
    template = aibrix_cfg.repo_path / cluster_cfg.config_template
    if not template.exists():
        raise RuntimeError(f"nvkind cluster template not found at {template}. Run the install step first.")
    return template


def create_cluster(cluster_cfg: ClusterConfig, aibrix_cfg: AibrixConfig) -> None:
    """Create a GPU-enabled nvkind cluster with retry logic.

    Existing clusters and leftover kind containers are removed first, so the
    call is safe to repeat.

    Args:
        cluster_cfg: Cluster configuration including retry count and wait.
        aibrix_cfg: AIBrix configuration locating the cluster template.

    Raises:
        RuntimeError: If the cluster cannot be created after all retries or
            its nodes cannot be listed.
    """
    console.print(Panel.fit("Creating nvkind cluster", style="bold blue"))
    ensure_nvkind(aibrix_cfg)
    template = _cluster_template(cluster_cfg, aibrix_cfg)

    with docker_client() as client:
        for message in docker_resource_warnings(client.info()):
            console.print(f"[yellow]\u26a0\ufe0f  {message}[/yellow]")

        try:
            sh.nvkind("--help")
        except sh.ErrorReturnCode:
            console.print("[yellow]\u26a0\ufe0f  nvkind is installed but may not be working correctly, continuing[/yellow]")

        delete_existing_clusters(cluster_cfg.delete_wait_seconds)
        if remove_kind_containers(client):
            console.print("[yellow]   Removed leftover kind/nvkind containers[/yellow]")
            time.sleep(CONTAINER_REMOVE_WAIT_SECONDS)

    def _before_retry(state: RetryCallState) -> None:
        console.print(
            f"[yellow]\u26a0\ufe0f  Cluster creation failed (attempt {state.attempt_number}/"
            f"{cluster_cfg.max_retries}), cleaning up and retrying...[/yellow]"
        )
        try:
            sh.nvkind("cluster", "delete")
        except sh.ErrorReturnCode:
            pass

    @retry(
        stop=stop_after_attempt(cluster_cfg.max_retries),
        wait=wait_fixed(cluster_cfg.retry_wait_seconds),
        before_sleep=_before_retry,
        reraise=True,
    )
    def _attempt() -> None:
        sh.nvkind(
            "cluster", "create",
            f"--config-template={template}",
            "--wait", cluster_cfg.wait,
            _cwd=str(aibrix_cfg.repo_path),
        )

    console.print("[yellow]\u2139\ufe0f  Creating cluster with nvkind (this may take several minutes)...[/yellow]")
    try:
        _attempt()
    except sh.ErrorReturnCode as err:
        raise RuntimeError(
            f"Failed to create Kubernetes cluster after {cluster_cfg.max_retries} attempts. "
            "Please check Docker settings and try again."
        ) from err

    ok, stdout, stderr = run_kubectl(["get", "nodes"])
    if not ok:
        raise RuntimeError(f"Failed to get cluster nodes, cluster creation may have failed: {stderr[:200]}")
    console.print(stdout.rstrip())
    console.print("[green]\u2705 Cluster created successfully[/green]")


def delete_cluster(settle_seconds: int) -> bool:
    """Delete the nvkind cluster, leftover containers, and dangling volumes.

    Args:
        settle_seconds: Pause between the cluster delete and container sweep.

    Returns:
        False if nvkind is not available and nothing was deleted.
    """
    console.print(Panel.fit("Deleting Kubernetes cluster", style="bold blue"))
    if not command_exists("nvkind"):
        console.print("[yellow]\u26a0\ufe0f  nvkind command not found. Unable to delete the cluster properly.[/yellow]")
        return False

    try:
        sh.nvkind("cluster", "delete")
    except sh.ErrorReturnCode:
        console.print("[yellow]\u26a0\ufe0f  nvkind cluster delete failed or no cluster exists[/yellow]")
    time.sleep(settle_seconds)

    with docker_client() as client:
        removed = remove_kind_containers(client)
        if removed:
            console.print(f"[yellow]   Removed {removed} remaining kind/nvkind containers[/yellow]")
        console.print("[yellow]\u2139\ufe0f  Removing dangling volumes...[/yellow]")
        client.volumes.prune()
    console.print("[green]\u2705 Kubernetes cluster deleted[/green]")
    return True


# ============================================================================
# kubeconfig repair
# ============================================================================

def find_control_plane(client: docker.DockerClient):
    """Return the first running kind/nvkind control-plane container, or None."""
    for container in client.containers.list(filters={"name": CONTROL_PLANE_NAME_FILTER}):
        if re.search(KIND_CONTAINER_PATTERN, container.name):
            return container
    return None


def parse_port_binding(bindings: list[dict] | None) -> tuple[str, str] | None:
    """Pick (host, port) from a docker port binding list.

    Empty or wildcard host addresses are mapped to loopback.
    """
    for binding in bindings or []:
        port = binding.get("HostPort")
        if not port:
            continue
        host = binding.get("HostIp") or DEFAULT_API_HOST
        if host in ("0.0.0.0", "::"):
            host = DEFAULT_API_HOST
        return host, port
    return None


def resolve_api_endpoint(container, api_port: int) -> tuple[str, str]:
    """Find the host address the API server port of *container* is published on.

    Checks the live port table first, then the configured port bindings,
    then falls back to the default loopback address and port.
    """
    key = f"{api_port}/tcp"
    endpoint = parse_port_binding(container.ports.get(key))
    if endpoint is None:
        console.print("[yellow]\u26a0\ufe0f  Could not find API port mapping, trying configured bindings...[/yellow]")
        bindings = container.attrs.get("HostConfig", {}).get("PortBindings") or {}
        endpoint = parse_port_binding(bindings.get(key))
    if endpoint is None:
        console.print("[yellow]\u26a0\ufe0f  Still no API port mapping, using the default address[/yellow]")
        endpoint = (DEFAULT_API_HOST, str(api_port))
    return endpoint


def cluster_name_from_container(name: str) -> str:
    """Strip the ``-control-plane`` (or ``-master``) suffix from a node container name."""
    return re.sub(r"-(control-plane|master).*$", "", name)


def rewrite_kubeconfig_server(kubeconfig: str, server_url: str) -> str:
    """Point every cluster entry of *kubeconfig* at *server_url*."""
    data = yaml.safe_load(kubeconfig) or {}
    for entry in data.get("clusters") or []:
        entry.setdefault("cluster", {})["server"] = server_url
    return yaml.safe_dump(data, default_flow_style=False)


def fix_kubectl_config(cluster_cfg: ClusterConfig) -> bool:
    """Rebuild the kubeconfig from the control-plane container.

    The admin kubeconfig inside the node points at the in-container API
    address; it is rewritten to the host-published port and installed as both
    ``~/nvkind-kubeconfig`` and the default kubeconfig.

    Args:
        cluster_cfg: Cluster configuration with kubeconfig destinations.

    Returns:
        False if the control-plane container or its kubeconfig is missing.
    """
    console.print(Panel.fit("Fixing kubectl configuration", style="bold blue"))
    with docker_client() as client:
        container = find_control_plane(client)
        if container is None:
            console.print("[yellow]\u26a0\ufe0f  Could not find control-plane container. kubectl may not work correctly.[/yellow]")
            return False
        console.print(f"[yellow]\u2139\ufe0f  Found control-plane container: {container.name}[/yellow]")

        host, port = resolve_api_endpoint(container, cluster_cfg.api_server_port)
        console.print(f"[yellow]\u2139\ufe0f  Using API server address: {host}:{port}[/yellow]")

        cluster_name = cluster_name_from_container(container.name)
        if not cluster_name:
            cluster_name = cluster_cfg.cluster_name
            console.print(f"[yellow]\u26a0\ufe0f  Could not derive cluster name, using '{cluster_name}'[/yellow]")
        logger.info("Cluster name: %s", cluster_name)

        exit_code, output = container.exec_run(["cat", ADMIN_KUBECONFIG])
    if exit_code != 0 or not output:
        console.print("[yellow]\u26a0\ufe0f  Failed to extract kubeconfig from container[/yellow]")
        return False

    kubeconfig = rewrite_kubeconfig_server(output.decode(), f"https://{host}:{port}")
    cluster_cfg.kubeconfig_path.parent.mkdir(parents=True, exist_ok=True)
    cluster_cfg.kubeconfig_path.write_text(kubeconfig)
    cluster_cfg.kubeconfig_path.chmod(0o600)
    cluster_cfg.default_kubeconfig_path.parent.mkdir(parents=True, exist_ok=True)
    cluster_cfg.default_kubeconfig_path.write_text(kubeconfig)
    cluster_cfg.default_kubeconfig_path.chmod(0o600)
    os.environ["KUBECONFIG"] = str(cluster_cfg.kubeconfig_path)
    console.print(f"[green]  \u2713 Wrote {cluster_cfg.kubeconfig_path} and {cluster_cfg.default_kubeconfig_path}[/green]")

    ok, _, _ = run_kubectl(["get", "nodes"])
    if ok:
        console.print("[green]\u2705 kubectl configuration updated[/green]")
    else:
        console.print("[yellow]\u26a0\ufe0f  kubeconfig written but kubectl test failed. Manual configuration may be needed.[/yellow]")
        _, view, _ = run_kubectl(["config", "view"])
        console.print(view.rstrip())
    return True
