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

"""Utility functions for external commands, containers, and image references."""

from __future__ import annotations

import subprocess
import time
from contextlib import suppress
from pathlib import Path

import docker
import sh

from nova_lab.cancellation import CancellationScope
from nova_lab.constants import TRANSIENT_ERROR_MARKERS
from nova_lab.errors import CommandError


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err


def run_kubectl(args: list[str], timeout: int = 30) -> tuple[bool, str, str]:
    """Run a kubectl command via subprocess and return (success, stdout, stderr).

    Uses subprocess instead of sh because callers inspect stderr separately
    (e.g. ``AlreadyExists`` or ``not found`` markers).

    Args:
        args: kubectl arguments (e.g. ``["get", "nodes"]``).
        timeout: Maximum seconds to wait for the command to complete.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    try:
        result = subprocess.run(
            ["kubectl", *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)


def run_cancellable(
    args: list[str],
    scope: CancellationScope,
    timeout: float | None = None,
    poll_interval: float = 1.0,
) -> str:
    """Run a command to completion unless the scope is cancelled first.

    The process is killed when the scope is cancelled or the timeout passes.

    Args:
        args: Full command line.
        scope: Cancellation scope polled while the command runs.
        timeout: Maximum seconds to let the command run, or None.
        poll_interval: Seconds between cancellation checks.

    Returns:
        Combined stdout and stderr.

    Raises:
        AbortedError: If the scope was cancelled.
        CommandError: If the command fails, times out, or cannot be started.
    """
    scope.raise_if_cancelled()
    command = " ".join(args)
    try:
        proc = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    except OSError as exc:
        raise CommandError(command, None, str(exc)) from exc

    deadline = time.monotonic() + timeout if timeout else None
    while True:
        try:
            output, _ = proc.communicate(timeout=poll_interval)
            break
        except subprocess.TimeoutExpired:
            if scope.cancelled:
                proc.kill()
                proc.communicate()
                raise scope.aborted() from None
            if deadline is not None and time.monotonic() >= deadline:
                proc.kill()
                output, _ = proc.communicate()
                raise CommandError(command, None, f"timeout after {timeout}s\n{output or ''}") from None

    if proc.returncode != 0:
        raise CommandError(command, proc.returncode, output or "")
    return output or ""


def run_container(
    docker_client: docker.DockerClient,
    scope: CancellationScope,
    image: str,
    command: list[str],
    *,
    timeout: float | None = None,
    poll_interval: float = 1.0,
    **run_kwargs,
) -> str:
    """Run a throwaway container to completion, killing it on cancellation.

    Args:
        docker_client: Docker client instance.
        scope: Cancellation scope polled while the container runs.
        image: Container image to run.
        command: Command and arguments passed to the container.
        timeout: Maximum seconds to let the container run, or None.
        poll_interval: Seconds between cancellation checks.
        **run_kwargs: Extra ``containers.run`` keyword arguments.

    Returns:
        Container logs (stdout and stderr).

    Raises:
        AbortedError: If the scope was cancelled.
        CommandError: If the container exits non-zero or times out.
    """
    scope.raise_if_cancelled()
    description = f"{image} {' '.join(command)}"
    container = docker_client.containers.run(image, command, detach=True, **run_kwargs)
    deadline = time.monotonic() + timeout if timeout else None
    try:
        while True:
            container.reload()
            if container.status in ("exited", "dead"):
                break
            if deadline is not None and time.monotonic() >= deadline:
                with suppress(docker.errors.APIError):
                    container.kill()
                raise CommandError(description, None, f"timeout after {timeout}s")
            if scope.wait(poll_interval):
                with suppress(docker.errors.APIError):
                    container.kill()
                raise scope.aborted()

        exit_code = container.wait().get("StatusCode", 1)
        output = container.logs(stdout=True, stderr=True).decode(errors="replace")
        if exit_code != 0:
            raise CommandError(description, exit_code, output)
        return output
    finally:
        with suppress(docker.errors.NotFound):
            container.remove(force=True)


def extract_registry_image_name(full_image: str) -> str:
    """Strip the registry host from an image reference.

    ``ghcr.io/llm-d/llm-d-cuda:v0.4.0`` becomes ``llm-d/llm-d-cuda:v0.4.0``;
    references with fewer than three path segments are returned unchanged.

    Args:
        full_image: Full image reference.

    Returns:
        Registry-relative image name.
    """
    parts = full_image.split("/")
    if len(parts) >= 3:
        return "/".join(parts[1:])
    return full_image


def is_retryable_error(err: BaseException) -> bool:
    """Return True if the error text matches a known transient failure."""
    text = str(err)
    return any(marker in text for marker in TRANSIENT_ERROR_MARKERS)


def directory_size(path: Path) -> str:
    """Return a human-readable size of everything under *path*."""
    total = float(sum(p.stat().st_size for p in path.rglob("*") if p.is_file()))
    for unit in ("B", "K", "M", "G"):
        if total < 1024:
            return f"{total:.0f}{unit}" if unit == "B" else f"{total:.1f}{unit}"
        total /= 1024
    return f"{total:.1f}T"


def is_populated_dir(path: Path) -> bool:
    """Return True if *path* is a directory with at least one entry."""
    return path.is_dir() and any(path.iterdir())
