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

"""Image pre-staging: mirror an image locally, then load it onto the elected node."""

from __future__ import annotations

import shlex
import threading
from collections.abc import Callable
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Protocol

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_incrementing

from nova_lab.cancellation import CancellationScope
from nova_lab.constants import dep_value
from nova_lab.context import RunContext
from nova_lab.election import ElectedNode, NodeSource
from nova_lab.errors import AbortedError, ImageWarmupError, RegistryError
from nova_lab.skopeo import TlsOptions
from nova_lab.utils import extract_registry_image_name, is_retryable_error


@dataclass(frozen=True)
class ImageResult:
    """Outcome of image pre-staging.

    Attributes:
        image: Original image reference.
        success: Whether the task completed (including soft skips).
        node: Node the image was loaded onto, or None.
        attempts: Copy attempts made.
        error: Failure recorded by the task, if any.
    """

    image: str
    success: bool
    node: str | None = None
    attempts: int = 0
    error: BaseException | None = None


@dataclass
class RetryState:
    """Progress of the bounded copy retry loop.

    Attributes:
        max_attempts: Attempt ceiling.
        attempt: Attempts started so far, never above ``max_attempts``.
        last_error: Error from the most recent failed attempt.
        delay: Backoff applied before the next attempt, in seconds.
    """

    max_attempts: int
    attempt: int = 0
    last_error: BaseException | None = None
    delay: float = 0.0


class Registry(Protocol):
    host: str
    def is_running(self) -> bool: ...
    def start(self) -> None: ...


class Copier(Protocol):
    def copy(
        self, scope: CancellationScope, source: str, dest_registry: str, dest_image: str,
        tls: TlsOptions | None = None,
    ) -> None: ...


class NodeShell(Protocol):
    def ssh(self, node: str, command: str, scope: CancellationScope, timeout: float | None = None) -> str: ...


def should_retry_copy(err: BaseException) -> bool:
    """Retry registry outages and transient transport errors, never aborts."""
    if isinstance(err, AbortedError):
        return False
    return isinstance(err, RegistryError) or is_retryable_error(err)


class ImagePrestager:
    """Stream an image into the mirror registry and load it onto one node.

    The elected node is a constructor argument, so pre-staging cannot run
    before election. ``elected=None`` means election produced no node; the
    image is then left for the node to fetch lazily.
    """

    def __init__(
        self,
        ctx: RunContext,
        elected: ElectedNode | None,
        *,
        registry: Registry,
        copier: Copier,
        nodes: NodeShell,
        image: str,
    ) -> None:
        self._ctx = ctx
        self.elected = elected
        self._registry = registry
        self._copier = copier
        self._nodes = nodes
        self.image = image
        self._cfg = ctx.settings.warmup
        self._log = ctx.child_logger("images")
        self.retry_state = RetryState(max_attempts=self._cfg.copy_max_attempts)

    def run(self, scope: CancellationScope) -> ImageResult:
        """Pre-stage the image; never raises.

        Returns:
            The task result. On failure ``success`` is False and the shared
            scope has been cancelled with the error as its cause.
        """
        console = self._ctx.console
        node = self.elected.name if self.elected else None
        try:
            staged = self.prestage(scope)
        except AbortedError as err:
            self._log.info("Image warmup abandoned: %s", err)
            return ImageResult(self.image, False, node, self.retry_state.attempt, err)
        except Exception as err:
            console.print(f"[red]❌ Image warmup failed: {err}[/red]")
            console.print("[red]   Cancelling deployment - warmup is required for tier 3[/red]")
            scope.cancel(err)
            return ImageResult(self.image, False, node, self.retry_state.attempt, err)

        if staged:
            console.print(f"[green]✅ Image warmup completed: {self.image}[/green]")
        return ImageResult(self.image, True, node if staged else None, self.retry_state.attempt)

    def prestage(self, scope: CancellationScope) -> bool:
        """Run the full pre-staging sequence.

        Returns:
            True if the image was loaded onto the elected node, False for the
            soft no-op when no node was elected.

        Raises:
            AbortedError: If the scope is cancelled.
            ImageWarmupError: If the copy step gives up.
            RegistryError: If the registry cannot be started.
            CommandError: If pulling or retagging on the node fails.
        """
        console = self._ctx.console
        if self.elected is None:
            console.print("[yellow]⚠️  No node elected; image will be pulled when a workload needs it[/yellow]")
            return False

        scope.raise_if_cancelled()
        self._ensure_registry(scope)

        dest_image = extract_registry_image_name(self.image)
        console.print("[yellow]ℹ️  Copying image to local registry "
                      "(this may take 10-30 minutes for large images)...[/yellow]")
        self.copy_with_retry(scope, dest_image)
        console.print("[green]✅ Image copied to local registry[/green]")

        self._distribute(scope, f"{self._registry.host}/{dest_image}")
        return True

    def _ensure_registry(self, scope: CancellationScope) -> None:
        try:
            running = self._registry.is_running()
        except RegistryError as err:
            self._log.warning("Failed to check registry status: %s", err)
            running = False
        if running:
            return
        self._log.info("Registry not running, starting it")
        self._registry.start()
        scope.sleep(self._cfg.registry_settle_seconds)

    def copy_with_retry(self, scope: CancellationScope, dest_image: str) -> RetryState:
        """Copy the image into the registry with bounded, cancelable retry.

        Attempt N that fails with a transient error waits N times the backoff
        unit before the next attempt; the wait ends early with AbortedError
        if the scope is cancelled. Other errors fail on the first attempt.

        Raises:
            AbortedError: If the scope is cancelled before or between attempts.
            ImageWarmupError: If the last attempt fails or an error is not retryable.
        """
        state = self.retry_state
        console = self._ctx.console
        tls = TlsOptions(skip_tls_verify=self._cfg.skip_tls_verify)

        def _before_sleep(retry_call) -> None:
            state.delay = retry_call.next_action.sleep
            console.print(
                f"[yellow]⚠️  Image copy failed (attempt {state.attempt}/{state.max_attempts}), "
                f"retrying in {state.delay:g}s: {state.last_error}[/yellow]"
            )

        @retry(
            stop=stop_after_attempt(state.max_attempts),
            wait=wait_incrementing(start=self._cfg.copy_backoff_seconds, increment=self._cfg.copy_backoff_seconds),
            retry=retry_if_exception(should_retry_copy),
            sleep=scope.sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )
        def _attempt() -> None:
            scope.raise_if_cancelled()
            state.attempt += 1
            try:
                self._ensure_registry(scope)
                self._copier.copy(scope, self.image, self._registry.host, dest_image, tls)
            except AbortedError:
                raise
            except Exception as err:
                state.last_error = err
                raise

        try:
            _attempt()
        except AbortedError:
            raise
        except Exception as err:
            raise ImageWarmupError(self.image, state.attempt, err) from err
        return state

    def _distribute(self, scope: CancellationScope, registry_image: str) -> None:
        node = self.elected.name
        console = self._ctx.console
        console.print(f"[yellow]ℹ️  Pulling image onto elected node {node}...[/yellow]")
        self._nodes.ssh(node, f"docker pull {shlex.quote(registry_image)}", scope,
                        timeout=self._cfg.node_pull_timeout_seconds)
        self._nodes.ssh(node, f"docker tag {shlex.quote(registry_image)} {shlex.quote(self.image)}", scope)
        console.print(f"[green]✅ Image ready on node {node}[/green]")


class ClusterNodes(NodeSource, NodeShell, Protocol):
    """Cluster operations needed to elect a node and load images onto it."""


def start_image_warmup(
    ctx: RunContext,
    scope: CancellationScope,
    executor: Executor,
    *,
    nodes: NodeShell,
    registry: Registry,
    copier: Copier,
    elected: Callable[[], ElectedNode | None],
    cluster_ready: threading.Event | None = None,
    image: str | None = None,
) -> Callable[[], ImageResult] | None:
    """Launch image pre-staging in the background.

    The task waits for *cluster_ready* (when given), resolves the node
    elected for this run through *elected*, then pre-stages the image onto it.

    Returns:
        A function blocking until the result is available, or None when
        acceleration is disabled.
    """
    if not ctx.settings.cluster.is_gpu_mode:
        ctx.logger.debug("GPU mode disabled, skipping image warmup")
        return None

    image = image or dep_value("images", "llmd")

    def _task() -> ImageResult:
        if cluster_ready is not None:
            try:
                scope.wait_for(cluster_ready, ctx.settings.warmup.poll_interval_seconds)
            except AbortedError as err:
                return ImageResult(image, False, error=err)
        prestager = ImagePrestager(ctx, elected(), registry=registry, copier=copier, nodes=nodes, image=image)
        return prestager.run(scope)

    return executor.submit(_task).result
