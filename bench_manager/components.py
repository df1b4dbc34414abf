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

"""AIBrix control plane installation, model deployment, and port forwarding."""

from __future__ import annotations

import os
import subprocess
import time

import sh
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.config import AibrixConfig, GpuConfig, ModelConfig
from bench_manager.constants import AIBRIX_KUSTOMIZE_OVERLAYS, LABEL_MODEL_NAME, NS_AIBRIX, dep_value
from bench_manager.gpu import ensure_gpu_capacity, pod_phase
from bench_manager.ports import port_in_use
from bench_manager.state import PidFile
from bench_manager.utils import kubectl_jsonpath, poll_until, run_kubectl

KUSTOMIZE_BASE = dep_value("aibrix", "kustomize_base", default="github.com/vllm-project/aibrix")


# ============================================================================
# AIBrix
# ============================================================================

def kustomize_url(overlay: str, version: str) -> str:
    """Remote kustomization URL for an AIBrix overlay at a release tag."""
    return f"{KUSTOMIZE_BASE}/{overlay}?ref={version}"


def install_aibrix(cfg: AibrixConfig) -> None:
    """Install the AIBrix dependency and release kustomizations.

    Resources that already exist are left alone, so re-running is safe.

    Args:
        cfg: AIBrix configuration with the release tag.

    Raises:
        RuntimeError: If kubectl fails for a reason other than existing resources.
    """
    console.print(Panel.fit(f"Installing AIBrix {cfg.aibrix_version}", style="bold blue"))
    for overlay in AIBRIX_KUSTOMIZE_OVERLAYS:
        url = kustomize_url(overlay, cfg.aibrix_version)
        console.print(f"[yellow]\u2139\ufe0f  Applying {url}...[/yellow]")
        ok, stdout, stderr = run_kubectl(["create", "-k", url], timeout=300)
        if stdout.strip():
            logger.info(stdout.strip())
        if ok:
            continue
        if "AlreadyExists" in stderr or "already exists" in stderr:
            console.print(f"[yellow]   Some resources from {overlay} already exist, skipping them[/yellow]")
            continue
        raise RuntimeError(f"Failed to install AIBrix {overlay}: {stderr.strip()[:500]}")

    _, pods, _ = run_kubectl(["get", "pods", "-n", NS_AIBRIX])
    console.print(pods.rstrip())
    console.print("[green]\u2705 AIBrix installation completed[/green]")


# ============================================================================
# Model deployment
# ============================================================================

def ensure_kvcache_dir(model_cfg: ModelConfig) -> None:
    """Create the host directory for the KV cache socket, using sudo when not root."""
    console.print(f"[yellow]\u2139\ufe0f  Creating directory for KV cache socket: {model_cfg.kvcache_dir}[/yellow]")
    try:
        if os.geteuid() == 0:
            model_cfg.kvcache_dir.mkdir(parents=True, exist_ok=True)
        else:
            sh.sudo("mkdir", "-p", str(model_cfg.kvcache_dir))
    except (OSError, sh.ErrorReturnCode) as e:
        console.print(f"[yellow]\u26a0\ufe0f  Failed to create {model_cfg.kvcache_dir}: {e}[/yellow]")


def create_hf_secret(model_cfg: ModelConfig) -> None:
    """Store the HuggingFace token in a secret the model manifest can mount."""
    run_kubectl(["delete", "secret", model_cfg.hf_token_secret, "-n", model_cfg.namespace, "--ignore-not-found"])
    ok, _, stderr = run_kubectl([
        "create", "secret", "generic", model_cfg.hf_token_secret,
        "-n", model_cfg.namespace,
        f"--from-literal=token={model_cfg.hf_token}",
    ])
    if not ok:
        raise RuntimeError(f"Failed to create secret {model_cfg.hf_token_secret}: {stderr.strip()}")
    console.print(f"[green]  \u2713 Created secret {model_cfg.hf_token_secret}[/green]")


def find_model_pod(model_cfg: ModelConfig) -> str:
    """Return the first pod labelled with the model name, or ``""``."""
    return kubectl_jsonpath(
        ["get", "pods", "-n", model_cfg.namespace, "-l", f"{LABEL_MODEL_NAME}={model_cfg.model_name}"],
        "{.items[0].metadata.name}",
    )


def wait_for_pod_running(pod: str, model_cfg: ModelConfig) -> bool:
    """Poll *pod* until it is Running.

    On timeout the pod description is printed to help diagnose scheduling or
    image pull problems.

    Returns:
        False if the timeout was reached.
    """
    console.print(f"[yellow]\u2139\ufe0f  Waiting for pod {pod} to be in Running state...[/yellow]")

    def _running() -> bool:
        phase = pod_phase(pod, model_cfg.namespace)
        if phase != "Running":
            logger.info("Pod %s is in %s state. Waiting...", pod, phase)
        return phase == "Running"

    if poll_until(_running, model_cfg.pod_timeout, model_cfg.poll_interval):
        console.print(f"[green]  \u2713 Pod {pod} is now running[/green]")
        return True

    phase = pod_phase(pod, model_cfg.namespace)
    console.print(f"[yellow]\u26a0\ufe0f  Timeout waiting for pod to be in Running state. Current status: {phase}[/yellow]")
    _, description, _ = run_kubectl(["describe", "pod", pod, "-n", model_cfg.namespace])
    console.print(description.rstrip())
    return False


def start_port_forward(pod: str, model_cfg: ModelConfig) -> int:
    """Forward the local forward port to the model port of *pod* in the background.

    The kubectl process is started in its own session so it survives this
    command; its PID is recorded for cleanup.

    Returns:
        PID of the port-forward process.
    """
    console.print(
        f"[yellow]\u2139\ufe0f  Forwarding localhost:{model_cfg.forward_port} to pod/{pod}:{model_cfg.model_port}...[/yellow]"
    )
    model_cfg.port_forward_log.parent.mkdir(parents=True, exist_ok=True)
    with open(model_cfg.port_forward_log, "ab") as log:
        proc = subprocess.Popen(
            [
                "kubectl", "port-forward", "-n", model_cfg.namespace,
                f"pod/{pod}", f"{model_cfg.forward_port}:{model_cfg.model_port}",
            ],
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    PidFile(model_cfg.port_forward_pid_file).write(proc.pid)
    logger.info("port-forward started with PID %d, log: %s", proc.pid, model_cfg.port_forward_log)
    time.sleep(model_cfg.port_forward_settle_seconds)
    return proc.pid


def ensure_port_forward(model_cfg: ModelConfig) -> None:
    """Make sure the model is reachable on the forward port.

    Raises:
        RuntimeError: If no model pod exists or the port-forward does not come up.
    """
    if port_in_use(model_cfg.forward_port):
        console.print(f"[yellow]\u2139\ufe0f  Port {model_cfg.forward_port} is in use. Assuming model is accessible.[/yellow]")
        return

    console.print(f"[yellow]\u26a0\ufe0f  Port {model_cfg.forward_port} is not in use. Setting up port forwarding...[/yellow]")
    pod = find_model_pod(model_cfg)
    if not pod:
        raise RuntimeError("No model pod found. Please run the setup first.")
    console.print(f"[yellow]\u2139\ufe0f  Found model pod: {pod}[/yellow]")
    start_port_forward(pod, model_cfg)
    if not port_in_use(model_cfg.forward_port):
        raise RuntimeError("Port forwarding failed. Cannot access the model.")
    console.print(f"[green]  \u2713 Model is accessible at localhost:{model_cfg.forward_port}[/green]")


def deploy_model(model_cfg: ModelConfig, gpu_cfg: GpuConfig) -> str:
    """Deploy the model, wait for its pod, and expose it on the forward port.

    Args:
        model_cfg: Model deployment configuration.
        gpu_cfg: GPU polling configuration used when capacity must be repaired.

    Returns:
        Name of the model pod.

    Raises:
        RuntimeError: If the manifest is missing or cannot be applied, no pod
            appears, or the forward port is already taken.
    """
    console.print(Panel.fit(f"Deploying {model_cfg.model_name} model", style="bold blue"))
    ensure_kvcache_dir(model_cfg)

    console.print("[yellow]\u2139\ufe0f  Checking if GPUs are available to the cluster before deployment...[/yellow]")
    ensure_gpu_capacity(gpu_cfg)

    manifest = model_cfg.manifest_path
    if not manifest.exists():
        raise RuntimeError(f"Model manifest not found: {manifest}")
    if model_cfg.hf_token:
        create_hf_secret(model_cfg)

    console.print(f"[yellow]\u2139\ufe0f  Applying {manifest}...[/yellow]")
    ok, _, stderr = run_kubectl(["apply", "-n", model_cfg.namespace, "-f", str(manifest)])
    if not ok:
        raise RuntimeError(f"Failed to apply {manifest}: {stderr.strip()}")

    console.print(
        f"[yellow]\u2139\ufe0f  Waiting for {model_cfg.model_name} deployment to be ready "
        "(this may take several minutes)...[/yellow]"
    )
    ok, _, stderr = run_kubectl(
        [
            "wait", "--for=condition=available", f"--timeout={model_cfg.deploy_timeout}s",
            f"deployment/{model_cfg.model_name}", "-n", model_cfg.namespace,
        ],
        timeout=model_cfg.deploy_timeout + 30,
    )
    if not ok:
        console.print(f"[yellow]\u26a0\ufe0f  Deployment not available yet: {stderr.strip()[:200]}[/yellow]")

    pod = find_model_pod(model_cfg)
    if not pod:
        raise RuntimeError(f"No pod found with label {LABEL_MODEL_NAME}={model_cfg.model_name}")
    wait_for_pod_running(pod, model_cfg)

    if port_in_use(model_cfg.forward_port):
        raise RuntimeError(
            f"Port {model_cfg.forward_port} is already in use. Please free up this port and try again."
        )
    start_port_forward(pod, model_cfg)
    if port_in_use(model_cfg.forward_port):
        console.print(
            f"[green]\u2705 {model_cfg.model_name} is deployed and accessible at "
            f"localhost:{model_cfg.forward_port} (forwarded to pod {pod})[/green]"
        )
    else:
        console.print("[yellow]\u26a0\ufe0f  Port forwarding does not appear to be working. The benchmark may fail.[/yellow]")
    return pod
