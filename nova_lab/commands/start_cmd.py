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

"""Start subcommand: deploy tiers 0..N with background warmup."""

from __future__ import annotations

import typer

from nova_lab.cancellation import CancellationScope
from nova_lab.cluster import MinikubeCluster
from nova_lab.components import build_deployers
from nova_lab.config import ClusterConfig, LabSettings, LLMConfig
from nova_lab.constants import MAX_TIER
from nova_lab.context import RunContext
from nova_lab.election import NodeElector
from nova_lab.model import ContainerModelDownloader
from nova_lab.registry import MirrorRegistry
from nova_lab.sequencer import TierSequencer
from nova_lab.skopeo import SkopeoCopier
from nova_lab.warmup import WarmupOrchestrator


def build_settings(
    model: str | None = None,
    hf_token: str | None = None,
    cpu_mode: bool = False,
    nodes: int | None = None,
) -> LabSettings:
    """Load settings from the environment and apply CLI overrides.

    Raises:
        pydantic.ValidationError: If an override breaks a field constraint.
    """
    settings = LabSettings()
    cluster_overrides: dict = {}
    if nodes is not None:
        cluster_overrides["nodes"] = nodes
    if cpu_mode:
        cluster_overrides["cpu_mode_forced"] = True
    llm_overrides: dict = {}
    if model is not None:
        llm_overrides["model"] = model
    if hf_token is not None:
        llm_overrides["hf_token"] = hf_token
    return LabSettings(
        cluster=ClusterConfig.model_validate({**settings.cluster.model_dump(), **cluster_overrides}),
        llm=LLMConfig.model_validate({**settings.llm.model_dump(), **llm_overrides}),
        warmup=settings.warmup,
    )


def build_sequencer(ctx: RunContext) -> TierSequencer:
    """Wire the real collaborators into a sequencer."""
    cluster = MinikubeCluster(ctx)
    registry = MirrorRegistry(ctx)
    orchestrator = WarmupOrchestrator(
        ctx,
        downloader=ContainerModelDownloader(ctx),
        cluster=cluster,
        registry=registry,
        copier=SkopeoCopier(ctx, registry),
    )
    return TierSequencer(ctx, build_deployers(ctx, cluster), orchestrator, NodeElector(ctx, cluster))


def run_start(ctx: RunContext, tier: int, sequencer: TierSequencer | None = None) -> list[int]:
    """Deploy up to *tier*; Ctrl-C cancels everything with a recorded cause.

    Raises:
        typer.Exit: With code 130 when interrupted.
    """
    sequencer = sequencer or build_sequencer(ctx)
    scope = CancellationScope("start")
    try:
        return sequencer.run(scope, tier)
    except KeyboardInterrupt:
        scope.cancel("interrupted by user")
        ctx.console.print("[yellow]⚠️  Deployment interrupted by user[/yellow]")
        raise typer.Exit(code=130)


def start(
    tier: int = typer.Option(MAX_TIER, "--tier", "-t", help="Highest tier to deploy (0-3)"),
    model: str | None = typer.Option(None, "--model", help="Hugging Face model id (overrides NOVA_MODEL)"),
    hf_token: str | None = typer.Option(None, "--hf-token", envvar="HF_TOKEN", help="Hugging Face token"),
    cpu_mode: bool = typer.Option(False, "--cpu-mode", help="Force CPU mode even when a GPU is present"),
    nodes: int | None = typer.Option(None, "--nodes", help="Total node count (overrides NOVA_NODES)"),
) -> None:
    """Deploy the lab up to the requested tier."""
    ctx = RunContext(settings=build_settings(model, hf_token, cpu_mode, nodes))
    run_start(ctx, tier)
