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

"""Exception types raised by lab deployment and warmup."""

from __future__ import annotations


class NovaError(RuntimeError):
    """Base class for all lab errors."""


class ValidationError(NovaError, ValueError):
    """Input validation failed."""

    def __init__(self, field: str, value: object, message: str) -> None:
        self.field = field
        self.value = value
        self.message = message
        super().__init__(f"validation failed for {field}={value}: {message}")


class CommandError(NovaError):
    """An external process or container exited unsuccessfully.

    The captured output is part of the message so callers can classify
    the failure by its text.
    """

    def __init__(self, command: str, returncode: int | None, output: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        msg = f"{command} failed (exit {returncode})"
        if output:
            msg += f"\nOutput:\n{output.strip()}"
        super().__init__(msg)


class ElectionError(NovaError):
    """No node could be elected to receive pre-staged artifacts.

    Attributes:
        reason: Failure reason, shared by every topology class that has no candidate.
        selector: Label selector that matched no node, if any.
    """

    def __init__(self, reason: str, selector: str | None = None) -> None:
        self.reason = reason
        self.selector = selector
        message = f"node election failed: {reason}"
        if selector is not None:
            message += f" (label {selector})"
        super().__init__(message)


class RegistryError(NovaError):
    """The mirror registry could not be checked or started."""


class ModelDownloadError(NovaError):
    """Model acquisition failed."""

    def __init__(self, model: str, cause: BaseException) -> None:
        self.model = model
        self.cause = cause
        super().__init__(f"model download failed for {model}: {cause}")


class ImageWarmupError(NovaError):
    """Image pre-staging failed after the copy step gave up."""

    def __init__(self, image: str, attempts: int, cause: BaseException) -> None:
        self.image = image
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"image warmup failed for {image} after {attempts} attempt(s): {cause}")


class AlreadyStartedError(NovaError):
    """The warmup orchestrator was started more than once."""


class AbortedError(NovaError):
    """An operation observed an earlier cancellation.

    ``cause`` is whatever the scope recorded when it was first cancelled, so
    the message repeats the original failure instead of a generic one.
    """

    def __init__(self, cause: BaseException | str | None) -> None:
        self.cause = cause
        super().__init__(f"aborted: {cause}" if cause is not None else "aborted")


class WarmupError(NovaError):
    """A warmup task failed; raised by the orchestrator's join."""

    def __init__(self, task: str, cause: BaseException) -> None:
        self.task = task
        self.cause = cause
        super().__init__(f"{task} warmup failed: {cause}")


class DeploymentError(NovaError):
    """A tier deployer failed."""

    def __init__(self, tier: int, cause: BaseException) -> None:
        self.tier = tier
        self.cause = cause
        super().__init__(f"failed to deploy tier {tier}: {cause}")


def root_cause(err: BaseException) -> BaseException:
    """Follow ``AbortedError`` causes down to the original failure."""
    seen = set()
    while isinstance(err, AbortedError) and isinstance(err.cause, BaseException) and id(err) not in seen:
        seen.add(id(err))
        err = err.cause
    return err
