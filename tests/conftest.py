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

"""Shared fakes for kubectl, docker, and sh used across the test suite."""

from __future__ import annotations

from contextlib import contextmanager

import pytest
import sh

from bench_manager import utils
from bench_manager.config import (
    AibrixConfig,
    BenchmarkConfig,
    ClusterConfig,
    GpuConfig,
    ModelConfig,
    ResolvedConfig,
)


class FakeKubectl:
    """Stand-in for ``run_kubectl`` answering by argument prefix.

    Later rules win over earlier ones; unmatched calls succeed with no output.
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.rules: list[tuple[tuple[str, ...], tuple[bool, str, str]]] = []

    def on(self, *prefix: str, ok: bool = True, out: str = "", err: str = "") -> FakeKubectl:
        self.rules.append((prefix, (ok, out, err)))
        return self

    def __call__(self, args, timeout=30):
        self.calls.append(list(args))
        for prefix, result in reversed(self.rules):
            if tuple(args[:len(prefix)]) == prefix:
                return result
        return True, "", ""

    def called(self, *prefix: str) -> bool:
        return any(tuple(call[:len(prefix)]) == prefix for call in self.calls)


class FakeSh:
    """Stand-in for the ``sh`` module recording every command.

    Args:
        outputs: Command line prefix -> stdout.
        failures: Command line prefix -> number of times it fails (-1 = always).
    """

    ErrorReturnCode = sh.ErrorReturnCode

    def __init__(self, outputs: dict | None = None, failures: dict | None = None):
        self.calls: list[str] = []
        self.kwargs: list[dict] = []
        self.outputs = outputs or {}
        self.failures = dict(failures or {})

    def _run(self, name: str, *args, **kwargs) -> str:
        line = " ".join([name, *map(str, args)])
        self.calls.append(line)
        self.kwargs.append(kwargs)
        for prefix, remaining in self.failures.items():
            if line.startswith(prefix) and remaining != 0:
                self.failures[prefix] = remaining - 1 if remaining > 0 else -1
                raise sh.ErrorReturnCode_1(line, b"", b"command failed")
        for prefix, output in self.outputs.items():
            if line.startswith(prefix):
                return output
        return ""

    def Command(self, name: str):
        return lambda *args, **kwargs: self._run(name, *args, **kwargs)

    def __getattr__(self, name: str):
        return lambda *args, **kwargs: self._run(name, *args, **kwargs)

    def ran(self, prefix: str) -> int:
        return sum(line.startswith(prefix) for line in self.calls)


class FakeContainer:
    def __init__(self, name="container", short_id="abc123", image="", published=(),
                 ports=None, attrs=None, exec_result=(0, b"")):
        self.name = name
        self.short_id = short_id
        self.published = set(published)
        self.ports = ports or {}
        self.attrs = attrs or {"Config": {"Image": image}}
        self.exec_result = exec_result
        self.stopped = False
        self.removed = False

    def stop(self):
        self.stopped = True

    def remove(self, force=False):
        self.removed = True

    def exec_run(self, cmd):
        self.exec_cmd = cmd
        return self.exec_result


class FakeContainers:
    def __init__(self, containers):
        self._containers = list(containers)

    def list(self, all=False, filters=None):
        result = list(self._containers)
        filters = filters or {}
        if "publish" in filters:
            result = [c for c in result if int(filters["publish"]) in c.published]
        if "name" in filters:
            result = [c for c in result if filters["name"] in c.name]
        return result


class FakeVolumes:
    def __init__(self):
        self.pruned = False

    def prune(self):
        self.pruned = True


class FakeDockerClient:
    def __init__(self, containers=(), info=None):
        self.containers = FakeContainers(containers)
        self.volumes = FakeVolumes()
        self._info = info or {}

    def info(self):
        return self._info


def patch_docker(monkeypatch, module, client: FakeDockerClient) -> None:
    """Make ``module.docker_client()`` yield *client*."""

    @contextmanager
    def _client():
        yield client

    monkeypatch.setattr(module, "docker_client", _client)


@pytest.fixture
def kubectl(monkeypatch):
    """Install a FakeKubectl everywhere ``run_kubectl`` is imported."""
    from bench_manager import cluster, components, gpu

    fake = FakeKubectl()
    for module in (utils, cluster, components, gpu):
        monkeypatch.setattr(module, "run_kubectl", fake)
    return fake


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Skip every fixed pause taken through ``time.sleep``."""
    import time

    monkeypatch.setattr(time, "sleep", lambda _: None)


@pytest.fixture
def model_cfg(tmp_path):
    return ModelConfig(
        work_dir=tmp_path,
        deploy_timeout=0,
        pod_timeout=0,
        poll_interval=0,
        port_forward_settle_seconds=0,
    )


@pytest.fixture
def gpu_cfg():
    return GpuConfig(namespace_timeout=0, pods_timeout=0, capacity_timeout=0, poll_interval=0,
                     plugin_restart_wait=0)


@pytest.fixture
def cluster_cfg(tmp_path):
    return ClusterConfig(
        retry_wait_seconds=0,
        delete_wait_seconds=0,
        kubeconfig_path=tmp_path / "nvkind-kubeconfig",
        default_kubeconfig_path=tmp_path / ".kube" / "config",
    )


@pytest.fixture
def aibrix_cfg(tmp_path):
    return AibrixConfig(work_dir=tmp_path, local_bin=tmp_path / "bin")


@pytest.fixture
def resolved(cluster_cfg, aibrix_cfg, gpu_cfg, model_cfg):
    return ResolvedConfig(
        cluster=cluster_cfg,
        aibrix=aibrix_cfg,
        gpu=gpu_cfg,
        model=model_cfg,
        benchmark=BenchmarkConfig(poll_interval=0),
    )
