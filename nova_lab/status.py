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

"""Read-only lab status: concurrent health probes and their rendering."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

import docker
import sh
from rich.table import Table

from nova_lab.components import HelmRelease, tier_releases
from nova_lab.constants import (
    CONTAINER_BIND9,
    CONTAINER_NGINX,
    CONTAINER_REGISTRY,
    LABEL_CONTROL_PLANE,
    LABEL_GPU_COUNT,
    MAX_TIER,
    MIN_TIER,
)
from nova_lab.context import RunContext
from nova_lab.utils import run_kubectl


@dataclass(frozen=True)
class ComponentStatus:
    """Health of one probed component.

    Attributes:
        name: Check name.
        healthy: Whether the component is up.
        detail: Short human-readable state.
        error: Error text when the check itself failed.
    """

    name: str
    healthy: bool
    detail: str = ""
    error: str | None = None


Check = Callable[[], ComponentStatus]


class StatusProber:
    """Run independent checks concurrently and collect every result.

    A check that raises is reported as unhealthy with its error; it never
    stops the others. ``probe`` always returns one status per check, in
    the order the checks were given.
    """

    def __init__(self, max_workers: int | None = None) -> None:
        self._max_workers = max_workers

    def probe(self, checks: Mapping[str, Check]) -> list[ComponentStatus]:
        if not checks:
            return []
        results: dict[str, ComponentStatus] = {}
        with ThreadPoolExecutor(max_workers=self._max_workers or len(checks)) as executor:
            futures = {executor.submit(fn): name for name, fn in checks.items()}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except Exception as err:
                    results[name] = ComponentStatus(name, False, "check failed", error=str(err))
        return [results[name] for name in checks]


class StatusChecker:
    """Build the lab's status checks: nodes, host services, Helm releases."""

    def __init__(self, ctx: RunContext, docker_client: docker.DockerClient | None = None) -> None:
        self._ctx = ctx
        self._client = docker_client

    def checks(self) -> dict[str, Check]:
        checks: dict[str, Check] = {"nodes": self.check_nodes}
        for name, container in (
            ("dns", CONTAINER_BIND9),
            ("gateway", CONTAINER_NGINX),
            ("registry", CONTAINER_REGISTRY),
        ):
            checks[name] = lambda name=name, container=container: self.check_container(name, container)
        for tier in range(MIN_TIER, MAX_TIER + 1):
            for release in tier_releases(tier):
                if release.gpu_only and not self._ctx.settings.cluster.is_gpu_mode:
                    continue
                checks[f"tier{tier}/{release.name}"] = (
                    lambda tier=tier, release=release: self.check_release(tier, release)
                )
        return checks

    def check_nodes(self) -> ComponentStatus:
        ok, stdout, stderr = run_kubectl(["get", "nodes", "-o", "json"])
        if not ok:
            return ComponentStatus("nodes", False, "unreachable", error=stderr.strip())
        nodes = json.loads(stdout).get("items", [])
        summaries = []
        ready = 0
        for node in nodes:
            meta = node.get("metadata", {})
            labels = meta.get("labels", {})
            conditions = node.get("status", {}).get("conditions", [])
            is_ready = any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)
            ready += is_ready
            role = "control-plane" if LABEL_CONTROL_PLANE in labels else "worker"
            gpus = labels.get(LABEL_GPU_COUNT)
            summaries.append(f"{meta.get('name')} ({role}{', gpu x' + gpus if gpus else ''})")
        detail = f"{ready}/{len(nodes)} ready"
        if summaries:
            detail += ": " + ", ".join(summaries)
        return ComponentStatus("nodes", bool(nodes) and ready == len(nodes), detail)

    def check_container(self, name: str, container_name: str) -> ComponentStatus:
        if self._client is None:
            self._client = docker.from_env()
        try:
            container = self._client.containers.get(container_name)
        except docker.errors.NotFound:
            return ComponentStatus(name, False, "not found")
        return ComponentStatus(name, container.status == "running", container.status)

    def check_release(self, tier: int, release: HelmRelease) -> ComponentStatus:
        name = f"tier{tier}/{release.name}"
        try:
            output = sh.helm("status", release.name, "-n", release.namespace, "-o", "json")
        except sh.ErrorReturnCode as err:
            return ComponentStatus(name, False, "not installed", error=err.stderr.decode(errors="replace").strip())
        state = json.loads(str(output)).get("info", {}).get("status", "unknown")
        return ComponentStatus(name, state == "deployed", state)

    def run(self, prober: StatusProber | None = None) -> list[ComponentStatus]:
        return (prober or StatusProber()).probe(self.checks())


def render_status(statuses: list[ComponentStatus]) -> Table:
    table = Table(title="NOVA lab status")
    table.add_column("Component")
    table.add_column("Health")
    table.add_column("Detail")
    for status in statuses:
        health = "[green]✓ healthy[/green]" if status.healthy else "[red]✗ unhealthy[/red]"
        detail = status.detail if not status.error else f"{status.detail} ({status.error})"
        table.add_row(status.name, health, detail)
    return table
