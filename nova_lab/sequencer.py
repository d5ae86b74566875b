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

"""Cumulative tier deployment gated on the shared warmup scope."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from rich.panel import Panel

from nova_lab.cancellation import CancellationScope
from nova_lab.components import TierDeployer, describe_tier
from nova_lab.constants import MAX_TIER, MIN_TIER, WARMUP_TIER
from nova_lab.context import RunContext
from nova_lab.election import ElectedNode, NodeElector
from nova_lab.errors import AbortedError, DeploymentError, ValidationError
from nova_lab.warmup import WarmupOrchestrator, WarmupResult


@dataclass
class DeploymentTierState:
    """Where the sequencer is in a run.

    Attributes:
        tier: Tier about to be deployed.
        completed: Tiers already deployed in this run, in order.
        scope: Scope checked before the tier starts.
    """

    tier: int
    completed: list[int] = field(default_factory=list)
    scope: CancellationScope | None = None

    def can_start(self) -> bool:
        """True when every earlier tier is done and the scope is still active."""
        prior_done = self.completed == list(range(MIN_TIER, self.tier))
        return prior_done and not (self.scope is not None and self.scope.cancelled)


class TierSequencer:
    """Deploy tiers 0..target in order, failing fast on warmup cancellation.

    The scope is polled at every tier boundary only. A warmup failure that
    happens while a tier is deploying is noticed once that tier finishes,
    so cancellation latency is one tier at most.

    Once tier 0 is up the sequencer elects the node for this run, whatever
    the target tier or acceleration mode, and hands it to the warmup.
    """

    def __init__(
        self,
        ctx: RunContext,
        deployers: Mapping[int, TierDeployer],
        orchestrator: WarmupOrchestrator | None = None,
        elector: NodeElector | None = None,
    ) -> None:
        self._ctx = ctx
        self._deployers = deployers
        self._orchestrator = orchestrator
        self._elector = elector
        self._log = ctx.child_logger("sequencer")
        self.state: DeploymentTierState | None = None
        self.warmup_result: WarmupResult | None = None
        self.elected: ElectedNode | None = None

    def run(self, scope: CancellationScope, target_tier: int) -> list[int]:
        """Deploy every tier up to and including *target_tier*.

        Args:
            scope: Caller's scope; warmup derives its shared scope from it.
            target_tier: Highest tier to deploy (0-3).

        Returns:
            The tiers deployed, in order.

        Raises:
            ValidationError: If *target_tier* is out of range or has no deployer.
            AbortedError: If the shared scope was cancelled before a tier.
            WarmupError: If a warmup task failed at the tier-3 join.
            DeploymentError: If a tier deployer failed.
        """
        if not MIN_TIER <= target_tier <= MAX_TIER:
            raise ValidationError("tier", target_tier, f"must be between {MIN_TIER} and {MAX_TIER}")
        missing = [t for t in range(MIN_TIER, target_tier + 1) if t not in self._deployers]
        if missing:
            raise ValidationError("tier", target_tier, f"no deployer for tier(s) {missing}")

        warmup = self._orchestrator if target_tier >= WARMUP_TIER else None
        if warmup is not None:
            warmup.start(scope)
        gate = warmup.scope if warmup is not None else scope

        completed: list[int] = []
        try:
            for tier in range(MIN_TIER, target_tier + 1):
                self.state = DeploymentTierState(tier, list(completed), gate)
                self._check(self.state)
                if tier == WARMUP_TIER and warmup is not None:
                    self._ctx.console.print("[yellow]ℹ️  Waiting for background warmup to finish...[/yellow]")
                    self.warmup_result = warmup.join()
                    self._check(self.state)

                self._ctx.console.print(Panel.fit(describe_tier(tier), style="bold blue"))
                try:
                    self._deployers[tier].deploy(gate, self._ctx.settings)
                except AbortedError:
                    raise
                except Exception as err:
                    raise DeploymentError(tier, err) from err
                completed.append(tier)
                self._log.info("Tier %d deployed", tier)

                if tier == MIN_TIER:
                    if self._elector is not None:
                        self.elected = self._elector.elect_or_none()
                    if warmup is not None:
                        warmup.mark_cluster_ready(self.elected)
        except KeyboardInterrupt:
            if warmup is not None:
                warmup.cancel("interrupted by user")
            raise
        except Exception as err:
            if warmup is not None:
                warmup.cancel(err)
            raise

        self._ctx.console.print(f"[green]✅ Deployed tiers {MIN_TIER}-{target_tier}[/green]")
        return completed

    def _check(self, state: DeploymentTierState) -> None:
        if not state.can_start():
            self._log.info("Not starting tier %d: %s", state.tier, state.scope.cause)
            raise state.scope.aborted()
