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

"""Tests for nvkind cluster lifecycle and kubeconfig repair."""

import os
import stat

import pytest
import yaml

from bench_manager import cluster
from bench_manager.cluster import (
    cluster_name_from_container,
    create_cluster,
    delete_cluster,
    delete_existing_clusters,
    fix_kubectl_config,
    list_clusters,
    parse_port_binding,
    remove_kind_containers,
    resolve_api_endpoint,
    rewrite_kubeconfig_server,
)

from conftest import FakeContainer, FakeDockerClient, FakeSh, patch_docker

ADMIN_CONF = """\
apiVersion: v1
kind: Config
clusters:
- cluster:
    certificate-authority-data: Zm9v
    server: https://nvkind-abc-control-plane:6443
  name: kubernetes
contexts:
- context:
    cluster: kubernetes
    user: kubernetes-admin
  name: kubernetes-admin@kubernetes
current-context: kubernetes-admin@kubernetes
users:
- name: kubernetes-admin
  user:
    token: abc
"""


class TestPortBinding:
    def test_wildcard_maps_to_loopback(self):
        assert parse_port_binding([{"HostIp": "0.0.0.0", "HostPort": "32771"}]) == ("127.0.0.1", "32771")
        assert parse_port_binding([{"HostIp": "::", "HostPort": "32771"}]) == ("127.0.0.1", "32771")

    def test_explicit_host(self):
        assert parse_port_binding([{"HostIp": "10.0.0.5", "HostPort": "6443"}]) == ("10.0.0.5", "6443")

    def test_empty(self):
        assert parse_port_binding(None) is None
        assert parse_port_binding([{"HostIp": "", "HostPort": ""}]) is None

    def test_endpoint_from_live_ports(self):
        container = FakeContainer(ports={"6443/tcp": [{"HostIp": "127.0.0.1", "HostPort": "40001"}]})
        assert resolve_api_endpoint(container, 6443) == ("127.0.0.1", "40001")

    def test_endpoint_from_configured_bindings(self):
        container = FakeContainer(attrs={"HostConfig": {"PortBindings": {
            "6443/tcp": [{"HostIp": "", "HostPort": "40002"}],
        }}})
        assert resolve_api_endpoint(container, 6443) == ("127.0.0.1", "40002")

    def test_endpoint_default(self):
        assert resolve_api_endpoint(FakeContainer(), 6443) == ("127.0.0.1", "6443")


class TestKubeconfig:
    def test_cluster_name(self):
        assert cluster_name_from_container("nvkind-abc-control-plane") == "nvkind-abc"
        assert cluster_name_from_container("kind-master") == "kind"

    def test_rewrite_server(self):
        data = yaml.safe_load(rewrite_kubeconfig_server(ADMIN_CONF, "https://127.0.0.1:40000"))
        assert [c["cluster"]["server"] for c in data["clusters"]] == ["https://127.0.0.1:40000"]
        assert data["users"][0]["user"]["token"] == "abc"

    def test_fix_kubectl_config(self, monkeypatch, cluster_cfg, kubectl):
        control_plane = FakeContainer(
            name="nvkind-abc-control-plane",
            ports={"6443/tcp": [{"HostIp": "0.0.0.0", "HostPort": "40000"}]},
            exec_result=(0, ADMIN_CONF.encode()),
        )
        worker = FakeContainer(name="nvkind-abc-worker")
        patch_docker(monkeypatch, cluster, FakeDockerClient([worker, control_plane]))
        monkeypatch.setenv("KUBECONFIG", "/dev/null")

        assert fix_kubectl_config(cluster_cfg)
        for path in (cluster_cfg.kubeconfig_path, cluster_cfg.default_kubeconfig_path):
            data = yaml.safe_load(path.read_text())
            assert data["clusters"][0]["cluster"]["server"] == "https://127.0.0.1:40000"
            assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert os.environ["KUBECONFIG"] == str(cluster_cfg.kubeconfig_path)
        assert control_plane.exec_cmd == ["cat", "/etc/kubernetes/admin.conf"]
        assert kubectl.called("get", "nodes")

    def test_fix_without_control_plane(self, monkeypatch, cluster_cfg):
        patch_docker(monkeypatch, cluster, FakeDockerClient([FakeContainer(name="postgres")]))
        assert not fix_kubectl_config(cluster_cfg)
        assert not cluster_cfg.kubeconfig_path.exists()

    def test_fix_with_unreadable_kubeconfig(self, monkeypatch, cluster_cfg):
        control_plane = FakeContainer(name="nvkind-control-plane", exec_result=(1, b""))
        patch_docker(monkeypatch, cluster, FakeDockerClient([control_plane]))
        assert not fix_kubectl_config(cluster_cfg)


class TestExistingClusters:
    def test_list_filters_empty_message(self, monkeypatch):
        monkeypatch.setattr(cluster, "sh", FakeSh(outputs={"nvkind cluster list": "No kind clusters found.\n"}))
        assert list_clusters() == []

    def test_list_names(self, monkeypatch):
        monkeypatch.setattr(cluster, "sh", FakeSh(outputs={"nvkind cluster list": "nvkind-abc\nnvkind-def\n"}))
        assert list_clusters() == ["nvkind-abc", "nvkind-def"]

    def test_delete_existing(self, monkeypatch):
        fake = FakeSh(outputs={"nvkind cluster list": "nvkind-abc\n"})
        monkeypatch.setattr(cluster, "sh", fake)
        monkeypatch.setattr(cluster, "command_exists", lambda cmd: True)
        assert delete_existing_clusters(0)
        assert fake.ran("nvkind cluster delete") == 1

    def test_nothing_to_delete(self, monkeypatch):
        fake = FakeSh()
        monkeypatch.setattr(cluster, "sh", fake)
        monkeypatch.setattr(cluster, "command_exists", lambda cmd: True)
        assert not delete_existing_clusters(0)
        assert fake.ran("nvkind cluster delete") == 0

    def test_remove_kind_containers(self):
        node = FakeContainer(name="nvkind-abc-worker")
        by_image = FakeContainer(name="leftover", image="kindest/node:v1.29")
        unrelated = FakeContainer(name="postgres", image="postgres:16")
        assert remove_kind_containers(FakeDockerClient([node, by_image, unrelated])) == 2
        assert node.removed and by_image.removed and not unrelated.removed


class TestCreateCluster:
    @pytest.fixture
    def ready(self, monkeypatch, aibrix_cfg, kubectl):
        template = aibrix_cfg.repo_path / "hack" / "lambda-cloud" / "nvkind-cluster.yaml"
        template.parent.mkdir(parents=True)
        template.write_text("kind: Cluster\n")
        monkeypatch.setattr(cluster, "ensure_nvkind", lambda cfg: None)
        monkeypatch.setattr(cluster, "delete_existing_clusters", lambda wait: False)
        patch_docker(monkeypatch, cluster, FakeDockerClient(info={"MemTotal": 64 * 1024 ** 3, "NCPU": 16}))
        kubectl.on("get", "nodes", out="nvkind-worker   Ready\n")
        return template

    def test_retries_then_succeeds(self, monkeypatch, ready, cluster_cfg, aibrix_cfg):
        fake = FakeSh(failures={"nvkind cluster create": 1})
        monkeypatch.setattr(cluster, "sh", fake)
        create_cluster(cluster_cfg, aibrix_cfg)
        assert fake.ran("nvkind cluster create") == 2
        assert fake.ran("nvkind cluster delete") == 1
        assert f"--config-template={ready}" in fake.calls[-1]

    def test_gives_up_after_max_retries(self, monkeypatch, ready, cluster_cfg, aibrix_cfg):
        cluster_cfg = cluster_cfg.model_copy(update={"max_retries": 2})
        fake = FakeSh(failures={"nvkind cluster create": -1})
        monkeypatch.setattr(cluster, "sh", fake)
        with pytest.raises(RuntimeError, match="after 2 attempts"):
            create_cluster(cluster_cfg, aibrix_cfg)
        assert fake.ran("nvkind cluster create") == 2

    def test_nodes_unreachable(self, monkeypatch, ready, cluster_cfg, aibrix_cfg, kubectl):
        monkeypatch.setattr(cluster, "sh", FakeSh())
        kubectl.on("get", "nodes", ok=False, err="connection refused")
        with pytest.raises(RuntimeError, match="Failed to get cluster nodes"):
            create_cluster(cluster_cfg, aibrix_cfg)

    def test_missing_template(self, monkeypatch, cluster_cfg, aibrix_cfg):
        monkeypatch.setattr(cluster, "ensure_nvkind", lambda cfg: None)
        with pytest.raises(RuntimeError, match="template not found"):
            create_cluster(cluster_cfg, aibrix_cfg)


class TestDeleteCluster:
    def test_without_nvkind(self, monkeypatch):
        monkeypatch.setattr(cluster, "command_exists", lambda cmd: False)
        assert not delete_cluster(0)

    def test_removes_leftovers_and_volumes(self, monkeypatch):
        fake = FakeSh(failures={"nvkind cluster delete": -1})
        node = FakeContainer(name="nvkind-abc-control-plane")
        client = FakeDockerClient([node])
        monkeypatch.setattr(cluster, "sh", fake)
        monkeypatch.setattr(cluster, "command_exists", lambda cmd: True)
        patch_docker(monkeypatch, cluster, client)
        assert delete_cluster(0)
        assert node.removed
        assert client.volumes.pruned
