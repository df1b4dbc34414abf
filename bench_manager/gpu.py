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

"""GPU operator setup and NVIDIA device plugin repair."""

from __future__ import annotations

import json
import re
import time

import sh
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.config import AibrixConfig, GpuConfig
from bench_manager.constants import (
    DEVICE_PLUGIN_CONTAINER,
    DEVICE_PLUGIN_ENV,
    GPU_CAPACITY_JSONPATH,
    GPU_OPERATOR_NAMESPACES,
    GPU_OPERATOR_POD_PATTERN,
    GPU_POD_PATTERN,
    LABEL_CONTROL_PLANE,
    LABEL_DEVICE_PLUGIN,
    LABEL_GPU_COUNT,
    LABEL_GPU_OPERATOR,
    LABEL_GPU_PRESENT,
    NS_KUBE_SYSTEM,
    REL_SETUP_SCRIPT,
)
from bench_manager.utils import kubectl_jsonpath, poll_until, run_kubectl

_POD_PHASES_JSONPATH = r'{range .items[*]}{.metadata.name}{" "}{.status.phase}{"\n"}{end}'


# ============================================================================
# Cluster queries
# ============================================================================

def gpu_capacity() -> str:
    """Return the ``nvidia.com/gpu`` capacity of all nodes, empty if none is advertised."""
    return kubectl_jsonpath(["get", "nodes"], GPU_CAPACITY_JSONPATH)


def first_pod(namespace: str, label: str) -> str:
    """Return the name of the first pod matching *label* in *namespace*, or ``""``."""
    return kubectl_jsonpath(["get", "pods", "-n", namespace, "-l", label], "{.items[0].metadata.name}")


def pod_phase(pod: str, namespace: str) -> str:
    """Return the phase of *pod*, or ``Unknown`` if it cannot be read."""
    return kubectl_jsonpath(["get", "pod", "-n", namespace, pod], "{.status.phase}") or "Unknown"


def pod_phases(namespace: str) -> dict[str, str]:
    """Return a mapping of pod name to phase for every pod in *namespace*."""
    output = kubectl_jsonpath(["get", "pods", "-n", namespace], _POD_PHASES_JSONPATH)
    phases = {}
    for line in output.splitlines():
        name, _, phase = line.partition(" ")
        if name:
            phases[name] = phase
    return phases


def namespace_exists(namespace: str) -> bool:
    ok, _, _ = run_kubectl(["get", "namespace", namespace])
    return ok


def first_worker_node() -> str:
    """Return the name of the first node without the control-plane role."""
    return kubectl_jsonpath(["get", "nodes", "-l", f"!{LABEL_CONTROL_PLANE}"], "{.items[0].metadata.name}")


def label_gpu_node() -> bool:
    """Advertise a GPU on the first worker node through node labels.

    Returns:
        False if there is no worker node to label.
    """
    node = first_worker_node()
    if not node:
        console.print("[yellow]\u26a0\ufe0f  No worker node found to label[/yellow]")
        return False
    console.print(f"[yellow]\u2139\ufe0f  Manually labeling worker node {node} with GPU capacity...[/yellow]")
    for label in (f"{LABEL_GPU_PRESENT}=true", f"{LABEL_GPU_COUNT}=1"):
        ok, _, stderr = run_kubectl(["label", "node", node, label, "--overwrite"])
        if not ok:
            logger.warning("Failed to label node %s with %s: %s", node, label, stderr.strip())
    return True


# ============================================================================
# GPU operator
# ============================================================================

def _operator_in_kube_system() -> bool:
    return bool(first_pod(NS_KUBE_SYSTEM, LABEL_GPU_OPERATOR) or first_pod(NS_KUBE_SYSTEM, LABEL_DEVICE_PLUGIN))


def _find_operator_namespace() -> str:
    for namespace in GPU_OPERATOR_NAMESPACES:
        if namespace_exists(namespace):
            return namespace
    if _operator_in_kube_system():
        return NS_KUBE_SYSTEM
    return ""


def _scan_all_namespaces() -> str:
    """Return the namespace of the first GPU operator pod in any namespace."""
    ok, stdout, _ = run_kubectl(["get", "pods", "--all-namespaces", "--no-headers"])
    if not ok:
        return ""
    matches = [line for line in stdout.splitlines() if re.search(GPU_OPERATOR_POD_PATTERN, line)]
    if not matches:
        return ""
    console.print("[yellow]\u2139\ufe0f  Found GPU-related pods in other namespaces:[/yellow]")
    console.print("\n".join(matches))
    return matches[0].split()[0]


def detect_operator_namespace(cfg: GpuConfig) -> str:
    """Find the namespace the GPU operator components run in.

    Pods already present in kube-system win. Otherwise the well-known operator
    namespaces are polled; after the timeout every namespace is scanned, and
    kube-system is the final fallback.
    """
    if _operator_in_kube_system():
        console.print("[yellow]\u2139\ufe0f  GPU operator pods detected in kube-system namespace[/yellow]")
        return NS_KUBE_SYSTEM

    namespace = poll_until(_find_operator_namespace, cfg.namespace_timeout, cfg.poll_interval)
    if namespace:
        console.print(f"[yellow]\u2139\ufe0f  Using GPU operator namespace: {namespace}[/yellow]")
        return namespace

    console.print(
        "[yellow]\u26a0\ufe0f  Timeout waiting for GPU operator namespace. Checking all namespaces...[/yellow]"
    )
    namespace = _scan_all_namespaces()
    if namespace:
        console.print(f"[yellow]\u2139\ufe0f  Using namespace: {namespace}[/yellow]")
        return namespace
    console.print("[yellow]\u26a0\ufe0f  No GPU operator pods found in any namespace. Continuing anyway...[/yellow]")
    return NS_KUBE_SYSTEM


def _operator_running(namespace: str) -> int | bool:
    """Return the number of running GPU pods, or True if only the device plugin is up."""
    running = sum(
        1 for name, phase in pod_phases(namespace).items()
        if phase == "Running" and re.search(GPU_POD_PATTERN, name)
    )
    if running:
        return running
    plugin = first_pod(namespace, LABEL_DEVICE_PLUGIN)
    return bool(plugin) and pod_phase(plugin, namespace) == "Running"


def wait_for_operator_pods(namespace: str, cfg: GpuConfig) -> bool:
    """Wait until the device plugin or any GPU pod in *namespace* is Running.

    Returns:
        False if the timeout was reached.
    """
    console.print(f"[yellow]\u2139\ufe0f  Checking for GPU operator pods in namespace: {namespace}...[/yellow]")
    result = poll_until(lambda: _operator_running(namespace), cfg.pods_timeout, cfg.poll_interval)
    if not result:
        console.print("[yellow]\u26a0\ufe0f  Timeout waiting for GPU operator pods to start. Continuing anyway...[/yellow]")
        return False
    if result is True:
        console.print("[green]  \u2713 NVIDIA device plugin pod is running[/green]")
    else:
        console.print(f"[green]  \u2713 GPU operator has {result} pods running in namespace {namespace}[/green]")
    return True


# ============================================================================
# Device plugin repair
# ============================================================================

def device_plugin_patch() -> str:
    """Strategic merge patch that relaxes the device plugin's init checks."""
    env = [{"name": name, "value": value} for name, value in DEVICE_PLUGIN_ENV.items()]
    return json.dumps({
        "spec": {"template": {"spec": {"containers": [{"name": DEVICE_PLUGIN_CONTAINER, "env": env}]}}}
    })


def _restart_device_plugin(pod: str, cfg: GpuConfig) -> None:
    daemonset = kubectl_jsonpath(
        ["get", "daemonset", "-n", NS_KUBE_SYSTEM, "-l", LABEL_DEVICE_PLUGIN], "{.items[0].metadata.name}"
    )
    if not daemonset:
        console.print(
            "[yellow]\u26a0\ufe0f  Could not find NVIDIA device plugin daemonset. "
            "Trying manual node labeling instead.[/yellow]"
        )
        label_gpu_node()
        return

    console.print("[yellow]\u2139\ufe0f  Patching NVIDIA device plugin daemonset...[/yellow]")
    ok, _, stderr = run_kubectl(
        ["patch", "daemonset", "-n", NS_KUBE_SYSTEM, daemonset, "--type", "strategic", "-p", device_plugin_patch()]
    )
    if not ok:
        logger.warning("Failed to patch daemonset %s: %s", daemonset, stderr.strip())

    console.print("[yellow]\u2139\ufe0f  Deleting NVIDIA device plugin pod to force recreation...[/yellow]")
    run_kubectl(["delete", "pod", "-n", NS_KUBE_SYSTEM, pod])
    time.sleep(cfg.plugin_restart_wait)


def fix_nvidia_device_plugin(cfg: GpuConfig) -> str:
    """Try to get the cluster to advertise GPU capacity.

    Labels the worker node when no device plugin exists, restarts a broken
    plugin with relaxed settings, then waits for capacity and labels the node
    as a last resort.

    Args:
        cfg: GPU polling configuration.

    Returns:
        The GPU capacity after the repair, empty if still none.
    """
    console.print("[yellow]\u2139\ufe0f  Checking for NVIDIA device plugin issues...[/yellow]")
    pod = first_pod(NS_KUBE_SYSTEM, LABEL_DEVICE_PLUGIN)
    if not pod:
        console.print("[yellow]\u2139\ufe0f  No NVIDIA device plugin pod found[/yellow]")
        label_gpu_node()
        return gpu_capacity()

    if pod_phase(pod, NS_KUBE_SYSTEM) != "Running":
        console.print("[yellow]\u2139\ufe0f  NVIDIA device plugin pod is not running. Attempting to fix...[/yellow]")
        _restart_device_plugin(pod, cfg)
    else:
        console.print("[green]  \u2713 NVIDIA device plugin pod is running correctly[/green]")

    console.print("[yellow]\u2139\ufe0f  Waiting for GPUs to be exposed to the cluster...[/yellow]")
    capacity = poll_until(gpu_capacity, cfg.capacity_timeout, cfg.poll_interval)
    if capacity:
        return capacity

    console.print("[yellow]\u26a0\ufe0f  Timeout waiting for GPUs to be exposed to the cluster[/yellow]")
    label_gpu_node()
    return gpu_capacity()


def ensure_gpu_capacity(cfg: GpuConfig) -> str:
    """Return the cluster's GPU capacity, running the device plugin repair if none is advertised."""
    capacity = gpu_capacity()
    if capacity:
        console.print(f"[green]  \u2713 GPUs are available to the cluster: {capacity}[/green]")
        return capacity

    console.print(
        "[yellow]\u26a0\ufe0f  No GPUs appear to be available to the cluster. "
        "Attempting to fix NVIDIA device plugin issues...[/yellow]"
    )
    capacity = fix_nvidia_device_plugin(cfg)
    if capacity:
        console.print(f"[green]  \u2713 GPUs are now available to the cluster: {capacity}[/green]")
    else:
        console.print("[yellow]\u26a0\ufe0f  Still no GPUs available to the cluster. Model deployment may fail.[/yellow]")
    return capacity


def setup_gpu_operator(gpu_cfg: GpuConfig, aibrix_cfg: AibrixConfig) -> None:
    """Install the NVIDIA GPU operator and wait for it to expose GPUs.

    Args:
        gpu_cfg: GPU polling configuration.
        aibrix_cfg: AIBrix configuration locating the setup script.

    Raises:
        RuntimeError: If the AIBrix checkout is missing.
    """
    console.print(Panel.fit("Setting up NVIDIA GPU Operator", style="bold blue"))
    if not aibrix_cfg.repo_path.is_dir():
        raise RuntimeError(f"AIBrix repository not found at {aibrix_cfg.repo_path}. Run the install step first.")
    sh.bash(REL_SETUP_SCRIPT, _cwd=str(aibrix_cfg.repo_path))

    console.print("[yellow]\u2139\ufe0f  Waiting for NVIDIA GPU Operator to initialize (this may take a few minutes)...[/yellow]")
    namespace = detect_operator_namespace(gpu_cfg)
    wait_for_operator_pods(namespace, gpu_cfg)
    ensure_gpu_capacity(gpu_cfg)
    console.print("[green]\u2705 NVIDIA GPU Operator setup completed[/green]")
