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

"""Warmup orchestration: model and image tasks sharing one cancellation scope."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from nova_lab.cancellation import CancellationScope
from nova_lab.context import RunContext
from nova_lab.election import ElectedNode, NodeElector
from nova_lab.errors import AbortedError, AlreadyStartedError, NovaError, WarmupError
from nova_lab.images import ClusterNodes, Copier, ImageResult, NodeShell, Registry, start_image_warmup
from nova_lab.model import ModelDownloader, ModelResult, start_model_warmup


class WarmupState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    JOINED = "joined"


@dataclass(frozen=True)
class WarmupResult:
    """What the warmup tasks did.

    Attributes:
        node_elected: Node elected for this run, if any.
        model_warmup_started: Whether model acquisition was launched.
        image_warmup_started: Whether image pre-staging was launched.
        model: Model task result, when launched.
        image: Image task result, when launched.
    """

    node_elected: str | None = None
    model_warmup_started: bool = False
    image_warmup_started: bool = False
    model: ModelResult | None = None
    image: ImageResult | None = None


class WarmupOrchestrator:
    """Run model acquisition and image pre-staging in the background.

    Both tasks share one scope derived from the caller's. A failing task
    cancels that scope, so the sequencer sees the failure at its next tier
    boundary without waiting for ``join()``.

    The image task does not start touching the cluster until
    ``mark_cluster_ready()`` hands over the node elected after tier 0.
    """

    def __init__(
        self,
        ctx: RunContext,
        *,
        downloader: ModelDownloader,
        cluster: NodeShell,
        registry: Registry,
        copier: Copier,
    ) -> None:
        self._ctx = ctx
        self._downloader = downloader
        self._cluster = cluster
        self._registry = registry
        self._copier = copier
        self._log = ctx.child_logger("warmup")
        self._lock = threading.Lock()
        self._state = WarmupState.IDLE
        self._scope: CancellationScope | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._cluster_ready = threading.Event()
        self._elected: ElectedNode | None = None
        self._model_join: Callable[[], ModelResult] | None = None
        self._image_join: Callable[[], ImageResult] | None = None
        self._result: WarmupResult | None = None
        self._error: BaseException | None = None

    @property
    def state(self) -> WarmupState:
        return self._state

    @property
    def scope(self) -> CancellationScope | None:
        """Shared scope of the warmup tasks; None until started."""
        return self._scope

    def start(self, parent: CancellationScope) -> WarmupOrchestrator:
        """Launch the warmup tasks without waiting for them.

        Args:
            parent: Scope the shared warmup scope is derived from.

        Raises:
            AlreadyStartedError: If called more than once.
        """
        with self._lock:
            if self._state is not WarmupState.IDLE:
                raise AlreadyStartedError(f"warmup already {self._state.value}")
            self._state = WarmupState.STARTED
            self._scope = parent.derive("warmup")
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="nova-warmup")

        self._ctx.console.print("[yellow]ℹ️  Starting background warmup...[/yellow]")
        # Model first: launch order decides which failure join reports.
        self._model_join = start_model_warmup(self._ctx, self._scope, self._executor, self._downloader)
        self._image_join = start_image_warmup(
            self._ctx,
            self._scope,
            self._executor,
            nodes=self._cluster,
            registry=self._registry,
            copier=self._copier,
            elected=lambda: self._elected,
            cluster_ready=self._cluster_ready,
        )
        self._log.info(
            "Warmup launched (model: %s, image: %s)",
            self._model_join is not None,
            self._image_join is not None,
        )
        return self

    def mark_cluster_ready(self, elected: ElectedNode | None = None) -> None:
        """Let the image task proceed, targeting *elected* (None skips distribution)."""
        self._elected = elected
        self._cluster_ready.set()

    def cancel(self, cause: BaseException | str | None = None) -> bool:
        """Cancel the shared scope and stop accepting work.

        Returns:
            False if already cancelled or never started.
        """
        if self._scope is None:
            return False
        cancelled = self._scope.cancel(cause or "warmup cancelled")
        if cancelled:
            self._log.info("Warmup cancelled: %s", self._scope.cause)
        if self._executor is not None:
            self._executor.shutdown(wait=False)
        return cancelled

    def join(self) -> WarmupResult:
        """Block until every launched task has reported.

        Returns:
            The combined warmup result.

        Raises:
            NovaError: If the orchestrator was never started.
            WarmupError: For the first failed task in launch order.
            AbortedError: If tasks only stopped because of an earlier cancellation.
        """
        with self._lock:
            if self._state is WarmupState.IDLE:
                raise NovaError("warmup was not started")
            if self._state is WarmupState.JOINED:
                return self._replay()

        try:
            model = self._await("model", self._model_join)
            image = self._await("image", self._image_join)
        except WarmupError as err:
            with self._lock:
                self._state = WarmupState.JOINED
                self._error = err
            raise
        finally:
            self._executor.shutdown(wait=False)

        result = WarmupResult(
            node_elected=self._elected.name if self._elected else None,
            model_warmup_started=self._model_join is not None,
            image_warmup_started=self._image_join is not None,
            model=model,
            image=image,
        )
        error = None
        aborted = False
        for name, task in (("model", model), ("image", image)):
            if task is None or task.success:
                continue
            if isinstance(task.error, AbortedError):
                aborted = True
            elif error is None:
                error = WarmupError(name, task.error)
        if error is None and aborted:
            error = self._scope.aborted()

        with self._lock:
            self._state = WarmupState.JOINED
            self._result, self._error = result, error
        return self._replay()

    def _replay(self) -> WarmupResult:
        if self._error is not None:
            raise self._error
        return self._result

    def _await(self, name: str, join_fn: Callable | None):
        if join_fn is None:
            return None
        try:
            return join_fn()
        except Exception as err:
            # Task bodies report failures in their results; anything raised is unexpected.
            self._log.exception("%s warmup task raised", name)
            self._scope.cancel(err)
            raise WarmupError(name, err) from err


def start_warmup(
    ctx: RunContext,
    scope: CancellationScope,
    *,
    downloader: ModelDownloader,
    cluster: ClusterNodes,
    registry: Registry,
    copier: Copier,
) -> Callable[[], WarmupResult]:
    """Start warmup immediately and return its join function.

    The cluster is assumed to be up already, so the node is elected here and
    the image task does not wait for a readiness signal.
    """
    orchestrator = WarmupOrchestrator(
        ctx, downloader=downloader, cluster=cluster, registry=registry, copier=copier,
    )
    orchestrator.mark_cluster_ready(NodeElector(ctx, cluster).elect_or_none())
    return orchestrator.start(scope).join
