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

"""Election of the single node that receives pre-staged artifacts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import sh

from nova_lab.constants import (
    LABEL_CONTROL_PLANE,
    LABEL_ELECTED_NODE,
    LABEL_MASTER,
    LABEL_NODE_TYPE,
    NODE_TYPE_CPU,
    NODE_TYPE_GPU,
)
from nova_lab.context import RunContext
from nova_lab.errors import ElectionError


class Topology(str, Enum):
    """Topology class that produced an election."""

    SINGLE_NODE = "single-node"
    MULTI_NODE_GPU = "multi-node-gpu"
    MULTI_NODE_CPU = "multi-node-cpu"


@dataclass(frozen=True)
class ElectedNode:
    """A node chosen to receive pre-staged artifacts for this run.

    Attributes:
        name: Kubernetes node name.
        topology: Topology class the node was elected under.
    """

    name: str
    topology: Topology


class NodeSource(Protocol):
    def node_names(self) -> list[str]: ...
    def nodes_by_label(self, selector: str) -> list[str]: ...
    def label_node(self, node: str, key: str, value: str) -> None: ...
    def remove_taint(self, node: str, key: str) -> None: ...


def classify_topology(node_count: int, gpu_mode: bool) -> Topology:
    if node_count == 1:
        return Topology.SINGLE_NODE
    return Topology.MULTI_NODE_GPU if gpu_mode else Topology.MULTI_NODE_CPU


ELECTED_SELECTOR = f"{LABEL_ELECTED_NODE}=true"
NO_CANDIDATE_REASON = "no accelerator node found"
_CANDIDATE_SELECTORS = {
    Topology.MULTI_NODE_GPU: f"{LABEL_NODE_TYPE}={NODE_TYPE_GPU}",
    Topology.MULTI_NODE_CPU: f"{LABEL_NODE_TYPE}={NODE_TYPE_CPU}",
}


class NodeElector:
    """Deterministically elect one node and mark it with the election label.

    - single node: the sole node, with its control-plane taint lifted
    - multi-node GPU: first node labeled as an accelerator node
    - multi-node CPU: first node labeled as a general-purpose worker

    "First" means lexicographically first by node name. A node already
    carrying the election label is reused.
    """

    def __init__(self, ctx: RunContext, cluster: NodeSource) -> None:
        self._ctx = ctx
        self._cluster = cluster
        self._log = ctx.child_logger("election")

    def elect(self, node_count: int | None = None, gpu_mode: bool | None = None) -> ElectedNode:
        """Elect the node for this run.

        Args:
            node_count: Total node count, defaults to the configured count.
            gpu_mode: Whether acceleration is enabled, defaults to the configured mode.

        Returns:
            The elected node and its topology class.

        Raises:
            ElectionError: If no eligible node exists.
        """
        cfg = self._ctx.settings.cluster
        node_count = cfg.nodes if node_count is None else node_count
        gpu_mode = cfg.is_gpu_mode if gpu_mode is None else gpu_mode
        topology = classify_topology(node_count, gpu_mode)
        console = self._ctx.console

        existing = sorted(self._cluster.nodes_by_label(ELECTED_SELECTOR))
        if existing:
            console.print(f"[yellow]ℹ️  Node {existing[0]} already elected[/yellow]")
            return ElectedNode(existing[0], topology)

        if topology is Topology.SINGLE_NODE:
            nodes = sorted(self._cluster.node_names())
            if not nodes:
                raise ElectionError("no nodes found in cluster")
            elected = nodes[0]
            self._lift_control_plane_taints(elected)
        else:
            selector = _CANDIDATE_SELECTORS[topology]
            candidates = sorted(self._cluster.nodes_by_label(selector))
            if not candidates:
                raise ElectionError(NO_CANDIDATE_REASON, selector)
            elected = candidates[0]

        self._log.info("Labeling node %s with %s", elected, ELECTED_SELECTOR)
        self._cluster.label_node(elected, LABEL_ELECTED_NODE, "true")
        console.print(f"[green]✅ Node {elected} elected ({topology.value})[/green]")
        return ElectedNode(elected, topology)

    def _lift_control_plane_taints(self, node: str) -> None:
        for key in (LABEL_CONTROL_PLANE, LABEL_MASTER):
            try:
                self._cluster.remove_taint(node, key)
            except RuntimeError as err:
                self._log.warning("Could not remove taint %s from %s: %s", key, node, err)

    def elect_or_none(self) -> ElectedNode | None:
        """Elect the node for this run, downgrading any failure to a warning.

        Returns:
            The elected node, or None when no node could be elected.
        """
        try:
            return self.elect()
        except (ElectionError, sh.ErrorReturnCode) as err:
            self._ctx.console.print(f"[yellow]⚠️  Failed to elect node: {err}[/yellow]")
            self._log.warning("Artifacts will not be pre-distributed to a target node")
            return None
