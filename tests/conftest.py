# /*
# Copyright 2026 The NOVA Authors.
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


"""Shared fixtures and fake collaborators for the nova_lab tests."""

from __future__ import annotations

import io
import threading

import pytest
from rich.console import Console

from nova_lab import ThreadAwareConsole
from nova_lab.config import ClusterConfig, LabSettings, LLMConfig, WarmupConfig
from nova_lab.context import RunContext


class FakeCluster:
    """In-memory cluster: node names, labels and recorded node commands."""

    def __init__(self, nodes, labels=None):
        self.nodes = list(nodes)
        self.labels = {name: dict(values) for name, values in (labels or {}).items()}
        self.removed_taints = []
        self.taints = []
        self.commands = []
        self.ssh_error = None
        self.taint_error = None

    def node_names(self):
        return list(self.nodes)

    def nodes_by_label(self, selector):
        key, _, value = selector.partition("=")
        matched = []
        for node in self.nodes:
            labels = self.labels.get(node, {})
            if key in labels and (not value or labels[key] == value):
                matched.append(node)
        return matched

    def label_node(self, node, key, value):
        self.labels.setdefault(node, {})[key] = value

    def remove_taint(self, node, key):
        if self.taint_error is not None:
            raise self.taint_error
        self.removed_taints.append((node, key))

    def taint_node(self, node, key, effect="NoSchedule"):
        self.taints.append((node, key, effect))

    def classify_nodes(self):
        control_plane = [n for n in self.nodes if "node-role.kubernetes.io/control-plane" in self.labels.get(n, {})]
        return control_plane, [n for n in self.nodes if n not in control_plane]

    def ssh(self, node, command, scope, timeout=None):
        scope.raise_if_cancelled()
        self.commands.append((node, command))
        if self.ssh_error is not None:
            raise self.ssh_error
        return ""


class FakeRegistry:
    host = "registry.local:5000"

    def __init__(self, running=True, start_error=None):
        self.running = running
        self.start_error = start_error
        self.starts = 0

    def is_running(self):
        return self.running

    def start(self):
        self.starts += 1
        if self.start_error is not None:
            raise self.start_error
        self.running = True


class FakeCopier:
    """Copier whose calls succeed or fail following a scripted list of outcomes."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []

    def copy(self, scope, source, dest_registry, dest_image, tls=None):
        self.calls.append((source, dest_registry, dest_image))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome


class FakeDownloader:
    """Writes a weights file into the target, optionally failing or blocking first."""

    def __init__(self, error=None, write=True, release=None):
        self.error = error
        self.write = write
        self.release = release
        self.calls = 0

    def download(self, scope, model, target, hf_token=""):
        self.calls += 1
        if self.release is not None:
            scope.wait_for(self.release, 0.01)
        if self.error is not None:
            raise self.error
        if self.write:
            (target / "model.safetensors").write_bytes(b"weights")


def build_ctx(tmp_path, *, nodes=3, gpus="all", cpu_mode=False, model="demo/model", **warmup) -> RunContext:
    warmup_values = {
        "models_dir": tmp_path / "models",
        "registry_cert_dir": tmp_path / "certs",
        "copy_backoff_seconds": 0,
        "registry_settle_seconds": 0,
        "poll_interval_seconds": 0.01,
    }
    warmup_values.update(warmup)
    settings = LabSettings(
        cluster=ClusterConfig(nodes=nodes, gpus=gpus, cpu_mode_forced=cpu_mode),
        llm=LLMConfig(model=model),
        warmup=WarmupConfig(**warmup_values),
    )
    return RunContext(settings=settings, console=ThreadAwareConsole(Console(file=io.StringIO())))


@pytest.fixture
def make_ctx(tmp_path):
    def _make(**kwargs):
        return build_ctx(tmp_path, **kwargs)

    return _make


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()


@pytest.fixture
def gpu_cluster():
    return FakeCluster(
        ["nova-m03", "nova", "nova-m02"],
        labels={
            "nova": {"node-role.kubernetes.io/control-plane": ""},
            "nova-m02": {"nova.local/node-type": "gpu-nvidia"},
            "nova-m03": {"nova.local/node-type": "cpu"},
        },
    )


def cancel_later(scope, cause, delay=0.05):
    timer = threading.Timer(delay, scope.cancel, [cause])
    timer.start()
    return timer
