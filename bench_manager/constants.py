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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# -- Resolved paths --
PACKAGE_DIR = Path(__file__).resolve().parent
MANIFESTS_DIR = PACKAGE_DIR / "manifests"


def load_dependencies() -> dict:
    """Load dependency versions and download locations from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = PACKAGE_DIR / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- System requirement thresholds --
SUPPORTED_PLATFORMS = ("Linux", "Darwin")
MIN_DOCKER_MEMORY_GB = 8
MIN_DOCKER_CPUS = 4
MIN_FREE_DISK_GB = 20

# -- Ports --
CLEANUP_PORTS = (9090, 3000, 8265, 8000, 8010)
REQUIRED_PORTS = (9090, 3000, 8265, 8000)
PORT_RELEASE_WAIT_SECONDS = 1
CONTAINER_STOP_WAIT_SECONDS = 1

# -- nvkind cluster --
DEFAULT_CLUSTER_NAME = "nvkind"
DEFAULT_CLUSTER_WAIT = "5m"
DEFAULT_CLUSTER_CREATE_MAX_RETRIES = 3
CLUSTER_CREATE_RETRY_WAIT_SECONDS = 10
CLUSTER_DELETE_WAIT_SECONDS = 5
CONTAINER_REMOVE_WAIT_SECONDS = 2
NO_CLUSTERS_MESSAGE = "No kind clusters found"
KIND_CONTAINER_PATTERN = r"kind|nvkind"
CONTROL_PLANE_NAME_FILTER = "control-plane"
API_SERVER_PORT = 6443
DEFAULT_API_HOST = "127.0.0.1"
ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
NVKIND_KUBECONFIG_NAME = "nvkind-kubeconfig"

# -- AIBrix repository scripts --
REPO_DIR_NAME = "aibrix"
REL_INSTALL_SCRIPT = "hack/lambda-cloud/install.sh"
REL_VERIFY_SCRIPT = "hack/lambda-cloud/verify.sh"
REL_SETUP_SCRIPT = "hack/lambda-cloud/setup.sh"
REL_CLUSTER_TEMPLATE = "hack/lambda-cloud/nvkind-cluster.yaml"
AIBRIX_KUSTOMIZE_OVERLAYS = ("config/dependency", "config/overlays/release")

# -- Namespaces --
NS_KUBE_SYSTEM = "kube-system"
NS_DEFAULT = "default"
NS_AIBRIX = "aibrix-system"
GPU_OPERATOR_NAMESPACES = ("gpu-operator-resources", "nvidia-gpu-operator")

# -- Labels and resource names --
LABEL_CONTROL_PLANE = "node-role.kubernetes.io/control-plane"
LABEL_GPU_OPERATOR = "app=gpu-operator"
LABEL_DEVICE_PLUGIN = "app=nvidia-device-plugin-daemonset"
LABEL_GPU_PRESENT = "nvidia.com/gpu.present"
LABEL_GPU_COUNT = "nvidia.com/gpu.count"
LABEL_MODEL_NAME = "model.aibrix.ai/name"
DEVICE_PLUGIN_CONTAINER = "nvidia-device-plugin"
GPU_POD_PATTERN = r"nvidia|gpu"
GPU_OPERATOR_POD_PATTERN = r"nvidia|gpu-operator"
GPU_CAPACITY_JSONPATH = r"{.items[*].status.capacity.nvidia\.com/gpu}"
DEVICE_PLUGIN_ENV = {
    "NVIDIA_VISIBLE_DEVICES": "all",
    "NVIDIA_DRIVER_CAPABILITIES": "all",
    "FAIL_ON_INIT_ERROR": "false",
}

# -- GPU operator polling --
GPU_NAMESPACE_TIMEOUT_SECONDS = 120
GPU_PODS_TIMEOUT_SECONDS = 120
GPU_CAPACITY_TIMEOUT_SECONDS = 60
GPU_POLL_INTERVAL_SECONDS = 10
DEVICE_PLUGIN_RESTART_WAIT_SECONDS = 10

# -- Model deployment --
DEFAULT_MODEL_NAME = dep_value("model", "name", default="llama-2-7b-hf")
DEFAULT_FORWARD_PORT = 8010
DEFAULT_MODEL_PORT = 8000
DEFAULT_KVCACHE_DIR = "/var/run/vineyard-kubernetes/default/aibrix-kvcache"
DEPLOYMENT_READY_TIMEOUT_SECONDS = 600
POD_RUNNING_TIMEOUT_SECONDS = 300
POD_POLL_INTERVAL_SECONDS = 10
PORT_FORWARD_SETTLE_SECONDS = 5

# -- State files --
BENCHMARK_PID_FILE = ".benchmark.pid"
PORT_FORWARD_PID_FILE = ".port_forward.pid"
PORT_FORWARD_LOG_FILE = "port-forward.log"
REL_RESULTS_DIR = "profiles/results"
LOG_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# -- Benchmark --
DEFAULT_BENCHMARK_IMAGE = dep_value("benchmark", "image", default="aibrix/runtime:nightly")
BENCHMARK_RESULT_DIR = dep_value("benchmark", "result_dir")
BENCHMARK_ENTRYPOINT = "aibrix_benchmark"
BENCHMARK_RUN_MARKER = "run benchmark with"
BENCHMARK_DONE_MARKER = "Benchmarking finished"
BENCHMARK_POLL_INTERVAL_SECONDS = 30
SETUP_GRACE_PERIOD_SECONDS = 10
