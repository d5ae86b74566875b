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

"""Per-tier deployers: cluster substrate for tier 0, Helm releases for every tier."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Protocol

import sh
from rich.panel import Panel

from nova_lab.cancellation import CancellationScope
from nova_lab.cluster import MinikubeCluster
from nova_lab.config import LabSettings
from nova_lab.constants import (
    HELM_TIMEOUT,
    LABEL_CONTROL_PLANE,
    LABEL_GPU_OPERANDS,
    LABEL_NODE_TYPE,
    MAX_TIER,
    MIN_TIER,
    NODE_TYPE_CPU,
    NODE_TYPE_GPU,
    TIER_NAMES,
    dep_value,
)
from nova_lab.context import RunContext
from nova_lab.errors import AbortedError
from nova_lab.utils import require_command, run_cancellable


class TierDeployer(Protocol):
    """Deploys one tier; the sequencer decides when."""

    tier: int

    def deploy(self, scope: CancellationScope, settings: LabSettings) -> None: ...


@dataclass(frozen=True)
class HelmRelease:
    """A pinned Helm release from dependencies.yaml.

    Attributes:
        name: Release name.
        namespace: Target namespace (created if missing).
        chart: ``repo/chart`` or an ``oci://`` reference.
        version: Chart version.
        repo: Repository URL; None for OCI charts.
        display_name: Human-facing name, defaults to ``name``.
        gpu_only: Skip the release unless GPU mode is enabled.
    """

    name: str
    namespace: str
    chart: str
    version: str
    repo: str | None = None
    display_name: str | None = None
    gpu_only: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> HelmRelease:
        return cls(
            name=data["name"],
            namespace=data["namespace"],
            chart=data["chart"],
            version=str(data["version"]),
            repo=data.get("repo"),
            display_name=data.get("display_name"),
            gpu_only=bool(data.get("gpu_only", False)),
        )

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def repo_name(self) -> str | None:
        """Local Helm repository alias, the chart prefix before ``/``."""
        if self.repo is None:
            return None
        return self.chart.split("/", 1)[0]


def tier_releases(tier: int) -> list[HelmRelease]:
    """Return the pinned releases for *tier*, in declaration order."""
    entries = dep_value("tiers", str(tier), "releases", default=[]) or []
    return [HelmRelease.from_dict(entry) for entry in entries]


def _run_parallel(ctx: RunContext, tasks: dict[str, Callable[[], None]]) -> None:
    """Run tasks in parallel, printing each task's output as a clean block.

    Args:
        ctx: Run context whose console is buffered per task.
        tasks: Mapping of task name to callable.

    Raises:
        Exception: Re-raises the first exception from any failed task.
    """
    if not tasks:
        return

    console = ctx.console
    outputs: dict[str, str] = {}
    lock = threading.Lock()

    def _run_task(name: str, fn: Callable) -> None:
        with console.buffered() as buf:
            try:
                fn()
            finally:
                with lock:
                    outputs[name] = buf.getvalue()

    try:
        with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
            futures = {executor.submit(_run_task, name, fn): name for name, fn in tasks.items()}
            for future in as_completed(futures):
                future.result()
    finally:
        for name in tasks:
            if outputs.get(name):
                console.print(outputs[name], end="")


class HelmTierDeployer:
    """Install a tier's Helm releases concurrently.

    The first failing release cancels a scope derived for the tier, so its
    siblings stop waiting on ``helm --wait`` and the tier fails promptly.
    """

    def __init__(self, ctx: RunContext, tier: int, releases: list[HelmRelease] | None = None) -> None:
        self._ctx = ctx
        self.tier = tier
        self.releases = tier_releases(tier) if releases is None else releases
        self._log = ctx.child_logger(f"tier{tier}")

    def selected(self, settings: LabSettings) -> list[HelmRelease]:
        """Releases to install under *settings*; GPU-only ones drop out in CPU mode."""
        selected = []
        for release in self.releases:
            if release.gpu_only and not settings.cluster.is_gpu_mode:
                self._ctx.console.print(f"[yellow]ℹ️  Skipping {release.label} (GPU mode disabled)[/yellow]")
                continue
            selected.append(release)
        return selected

    def deploy(self, scope: CancellationScope, settings: LabSettings) -> None:
        releases = self.selected(settings)
        if not releases:
            return
        require_command("helm")
        self._add_repositories(releases)

        tier_scope = scope.derive(f"tier-{self.tier}")

        def _install(release: HelmRelease) -> None:
            try:
                self.install(tier_scope, release)
            except Exception as err:
                tier_scope.cancel(err)
                raise

        try:
            _run_parallel(self._ctx, {r.name: (lambda r=r: _install(r)) for r in releases})
        except AbortedError:
            # A sibling's failure aborted this install; report the failure itself.
            if scope.cancelled or not isinstance(tier_scope.cause, BaseException):
                raise
            raise tier_scope.cause from None

    def _add_repositories(self, releases: list[HelmRelease]) -> None:
        repos = {r.repo_name: r.repo for r in releases if r.repo is not None}
        for name, url in repos.items():
            sh.helm("repo", "add", name, url, "--force-update")
        if repos:
            sh.helm("repo", "update", *repos)

    def install(self, scope: CancellationScope, release: HelmRelease) -> None:
        """Install or upgrade one release and wait for it to become ready.

        Raises:
            AbortedError: If the scope is cancelled first.
            CommandError: If helm fails.
        """
        console = self._ctx.console
        console.print(f"[yellow]ℹ️  Installing {release.label} {release.version}...[/yellow]")
        scope.raise_if_cancelled()
        run_cancellable(
            [
                "helm", "upgrade", "--install", release.name, release.chart,
                "--namespace", release.namespace,
                "--create-namespace",
                "--version", release.version,
                "--wait",
                "--timeout", HELM_TIMEOUT,
            ],
            scope,
            poll_interval=self._ctx.settings.warmup.poll_interval_seconds,
        )
        console.print(f"[green]✅ {release.label} installed[/green]")


class ClusterTierDeployer:
    """Tier 0: bring up the cluster, label its nodes, then install base charts."""

    tier = MIN_TIER

    def __init__(self, ctx: RunContext, cluster: MinikubeCluster, helm: HelmTierDeployer | None = None) -> None:
        self._ctx = ctx
        self._cluster = cluster
        self._helm = helm or HelmTierDeployer(ctx, MIN_TIER)
        self._log = ctx.child_logger("tier0")

    def deploy(self, scope: CancellationScope, settings: LabSettings) -> None:
        for cmd in ("minikube", "kubectl", "docker"):
            require_command(cmd)
        if self._cluster.is_running():
            self._ctx.console.print(f"[yellow]ℹ️  Cluster '{self._cluster.profile}' already running[/yellow]")
        else:
            self._cluster.start()
        scope.raise_if_cancelled()
        self._cluster.wait_for_nodes()
        self.label_nodes(settings.cluster.is_gpu_mode)
        scope.raise_if_cancelled()
        self._helm.deploy(scope, settings)

    def label_nodes(self, gpu_mode: bool) -> None:
        """Apply node-type labels and keep workloads off the control plane.

        A single node gets its type label and loses the control-plane taint.
        Otherwise control-plane nodes are tainted, the first worker becomes
        the GPU node in GPU mode, and the remaining workers are CPU nodes.
        """
        console = self._ctx.console
        console.print(Panel.fit("Labeling cluster nodes", style="bold blue"))
        control_plane, workers = self._cluster.classify_nodes()

        if not workers:
            for node in control_plane:
                self._cluster.remove_taint(node, LABEL_CONTROL_PLANE)
                self._label_type(node, NODE_TYPE_GPU if gpu_mode else NODE_TYPE_CPU)
            console.print("[green]✅ Single-node cluster labeled[/green]")
            return

        for node in control_plane:
            self._cluster.taint_node(node, LABEL_CONTROL_PLANE)
        for index, node in enumerate(sorted(workers)):
            self._label_type(node, NODE_TYPE_GPU if gpu_mode and index == 0 else NODE_TYPE_CPU)
        console.print(f"[green]✅ Labeled {len(workers)} worker node(s)[/green]")

    def _label_type(self, node: str, node_type: str) -> None:
        self._log.info("Labeling node %s as %s", node, node_type)
        self._cluster.label_node(node, LABEL_NODE_TYPE, node_type)
        if node_type == NODE_TYPE_CPU:
            self._cluster.label_node(node, LABEL_GPU_OPERANDS, "false")


def build_deployers(ctx: RunContext, cluster: MinikubeCluster) -> dict[int, TierDeployer]:
    """One deployer per tier, keyed by tier number."""
    deployers: dict[int, TierDeployer] = {MIN_TIER: ClusterTierDeployer(ctx, cluster)}
    for tier in range(MIN_TIER + 1, MAX_TIER + 1):
        deployers[tier] = HelmTierDeployer(ctx, tier)
    return deployers


def describe_tier(tier: int) -> str:
    return f"Tier {tier}: {TIER_NAMES.get(tier, 'unknown')}"
