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

"""Minikube cluster lifecycle and node queries."""

from __future__ import annotations

import os

import sh
from rich.panel import Panel

from nova_lab.cancellation import CancellationScope
from nova_lab.constants import LABEL_CONTROL_PLANE, NODES_READY_TIMEOUT, TAINT_EFFECT_NO_SCHEDULE
from nova_lab.context import RunContext
from nova_lab.utils import run_cancellable, run_kubectl

_MINIKUBE_ENV = {"LC_ALL": "C", "LANG": "C"}


def _split_names(output: str) -> list[str]:
    return sorted(output.split())


class MinikubeCluster:
    """Cluster-manager operations backed by the minikube and kubectl CLIs.

    Node lists are returned sorted by name so "first node" is stable
    across runs against the same topology.
    """

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx
        self._cfg = ctx.settings.cluster
        self.profile = self._cfg.profile

    def _minikube(self, *args: str) -> str:
        return str(sh.minikube("-p", self.profile, *args, _env={**os.environ, **_MINIKUBE_ENV})).strip()

    # -- lifecycle -----------------------------------------------------------

    def is_running(self) -> bool:
        try:
            return self._minikube("status", "--format", "{{.Host}}") == "Running"
        except sh.ErrorReturnCode:
            return False

    def start(self) -> None:
        """Start the minikube profile with the configured topology."""
        console = self._ctx.console
        console.print(Panel.fit(f"Starting minikube profile '{self.profile}'", style="bold blue"))
        args = [
            "start",
            "--nodes", str(self._cfg.nodes),
            "--cpus", str(self._cfg.cpus),
            "--memory", self._cfg.memory,
            "--kubernetes-version", self._cfg.kubernetes_version,
            "--network", self._ctx.settings.warmup.registry_network,
        ]
        if self._cfg.is_gpu_mode:
            args += ["--gpus", self._cfg.gpus]
        self._minikube(*args)
        console.print(f"[green]✅ Cluster '{self.profile}' started[/green]")

    def wait_for_nodes(self) -> None:
        """Wait for all nodes to be ready."""
        self._ctx.console.print("[yellow]ℹ️  Waiting for all nodes to be ready...[/yellow]")
        sh.kubectl("wait", "--for=condition=Ready", "nodes", "--all", f"--timeout={NODES_READY_TIMEOUT}")
        self._ctx.console.print("[green]✅ All nodes are ready[/green]")

    # -- node queries --------------------------------------------------------

    def node_names(self) -> list[str]:
        output = sh.kubectl("get", "nodes", "-o", "jsonpath={.items[*].metadata.name}")
        return _split_names(str(output))

    def nodes_by_label(self, selector: str) -> list[str]:
        """Return names of nodes matching a label selector such as ``key=value``."""
        output = sh.kubectl("get", "nodes", "-l", selector, "-o", "jsonpath={.items[*].metadata.name}")
        return _split_names(str(output))

    def classify_nodes(self) -> tuple[list[str], list[str]]:
        """Split nodes into (control_plane, workers)."""
        control_plane = self.nodes_by_label(LABEL_CONTROL_PLANE)
        workers = [n for n in self.node_names() if n not in control_plane]
        return control_plane, workers

    # -- node mutation -------------------------------------------------------

    def label_node(self, node: str, key: str, value: str) -> None:
        sh.kubectl("label", "node", node, f"{key}={value}", "--overwrite")

    def taint_node(self, node: str, key: str, effect: str = TAINT_EFFECT_NO_SCHEDULE) -> None:
        sh.kubectl("taint", "nodes", node, f"{key}:{effect}", "--overwrite")

    def remove_taint(self, node: str, key: str) -> None:
        """Remove a taint by key; a missing taint is not an error.

        Raises:
            RuntimeError: If kubectl fails for any other reason.
        """
        ok, _, stderr = run_kubectl(["taint", "nodes", node, f"{key}-"])
        if not ok and "not found" not in stderr:
            raise RuntimeError(f"Failed to remove taint {key} from {node}: {stderr.strip()}")

    def ssh(self, node: str, command: str, scope: CancellationScope, timeout: float | None = None) -> str:
        """Run a shell command on a node, abandoning it if the scope is cancelled."""
        return run_cancellable(
            ["minikube", "-p", self.profile, "ssh", "-n", node, "--", command],
            scope,
            timeout=timeout,
            poll_interval=self._ctx.settings.warmup.poll_interval_seconds,
        )
