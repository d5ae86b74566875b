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

"""Model acquisition: download a model into its slug-derived cache directory."""

from __future__ import annotations

import os
import shlex
from collections.abc import Callable
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import docker

from nova_lab.cancellation import CancellationScope
from nova_lab.config import model_cache_path
from nova_lab.constants import dep_value
from nova_lab.context import RunContext
from nova_lab.errors import AbortedError, ModelDownloadError
from nova_lab.utils import directory_size, is_populated_dir, run_container

CONTAINER_MODELS_DIR = "/models"


@dataclass(frozen=True)
class ModelResult:
    """Outcome of model acquisition.

    Attributes:
        model: Hugging Face model id.
        path: Cache directory on the host.
        success: Whether the model files are present.
        cached: Whether the files were already present before this run.
        error: Failure recorded by the task, if any.
    """

    model: str
    path: Path
    success: bool
    cached: bool = False
    error: BaseException | None = None


class ModelDownloader(Protocol):
    def download(self, scope: CancellationScope, model: str, target: Path, hf_token: str = "") -> None: ...


class ContainerModelDownloader:
    """Download a model with ``hf download`` inside a throwaway Python container.

    The container runs as the invoking user so files land on the host with
    normal ownership, and uses a tmpfs ``/tmp`` as its home.
    """

    def __init__(self, ctx: RunContext, docker_client: docker.DockerClient | None = None) -> None:
        self._ctx = ctx
        self._client = docker_client

    def download(self, scope: CancellationScope, model: str, target: Path, hf_token: str = "") -> None:
        script = "pip install uv --no-cache-dir && "
        script += f"python -m uv tool run hf download {shlex.quote(model)} --local-dir {CONTAINER_MODELS_DIR}"
        environment = ["HOME=/tmp", "TMPDIR=/tmp"]
        if hf_token:
            environment.append(f"HF_TOKEN={hf_token}")
            script += ' --token "$HF_TOKEN"'

        if self._client is None:
            self._client = docker.from_env()
        run_container(
            self._client,
            scope,
            dep_value("images", "model_downloader", default="python:3.14-alpine"),
            ["sh", "-c", script],
            poll_interval=self._ctx.settings.warmup.poll_interval_seconds,
            user=f"{os.getuid()}:{os.getgid()}",
            volumes={str(target): {"bind": CONTAINER_MODELS_DIR, "mode": "rw"}},
            tmpfs={"/tmp": "rw,exec,mode=1777"},
            working_dir="/tmp",
            environment=environment,
        )


class ModelWarmup:
    """Ensure the configured model's files exist in the cache.

    A failed download cancels the shared scope so the rest of the
    deployment stops instead of waiting on a model that will never arrive.
    """

    def __init__(self, ctx: RunContext, downloader: ModelDownloader) -> None:
        self._ctx = ctx
        self._downloader = downloader
        self._log = ctx.child_logger("model")
        self.model = ctx.settings.llm.model
        self.path = model_cache_path(ctx.settings)

    def is_cached(self) -> bool:
        return is_populated_dir(self.path)

    def run(self, scope: CancellationScope) -> ModelResult:
        """Download the model unless already cached; never raises.

        Returns:
            The task result. On failure ``success`` is False and the shared
            scope has been cancelled with the error as its cause.
        """
        console = self._ctx.console
        if self.is_cached():
            console.print(f"[yellow]ℹ️  Model already cached: {self.model}[/yellow]")
            return ModelResult(self.model, self.path, success=True, cached=True)

        console.print(f"[yellow]ℹ️  Downloading model in background: {self.model}[/yellow]")
        try:
            scope.raise_if_cancelled()
            self.path.mkdir(parents=True, exist_ok=True)
            self._downloader.download(scope, self.model, self.path, self._ctx.settings.llm.hf_token)
            if not is_populated_dir(self.path):
                raise RuntimeError(f"download produced no files in {self.path}")
        except AbortedError as err:
            self._log.info("Model download abandoned: %s", err)
            return ModelResult(self.model, self.path, success=False, error=err)
        except Exception as err:
            failure = ModelDownloadError(self.model, err)
            console.print(f"[red]❌ {failure}[/red]")
            console.print("[red]   Cancelling deployment - warmup is required for tier 3[/red]")
            scope.cancel(failure)
            return ModelResult(self.model, self.path, success=False, error=failure)

        console.print(f"[green]✅ Model downloaded ({directory_size(self.path)}): {self.model}[/green]")
        return ModelResult(self.model, self.path, success=True)


def start_model_warmup(
    ctx: RunContext,
    scope: CancellationScope,
    executor: Executor,
    downloader: ModelDownloader,
) -> Callable[[], ModelResult] | None:
    """Launch model acquisition in the background.

    Args:
        ctx: Run context.
        scope: Shared cancellation scope.
        executor: Executor that runs the download.
        downloader: Download collaborator.

    Returns:
        A function blocking until the result is available, or None when no
        model is configured.
    """
    if not ctx.settings.llm.model:
        ctx.logger.debug("No model configured, skipping model warmup")
        return None

    task = ModelWarmup(ctx, downloader)
    if task.is_cached():
        done: Future[ModelResult] = Future()
        done.set_result(task.run(scope))
        return done.result
    return executor.submit(task.run, scope).result
