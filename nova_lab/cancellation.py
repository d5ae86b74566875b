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

"""Cooperative, one-way cancellation shared by warmup tasks and the sequencer."""

from __future__ import annotations

import threading

from nova_lab.errors import AbortedError, root_cause


class CancellationScope:
    """A cancelable execution scope, optionally chained from a parent.

    Cancellation is a one-way latch: the first ``cancel()`` records its cause,
    later calls are no-ops, and the scope never reports "not cancelled" again.
    Cancelling a scope cancels every scope derived from it with the same
    cause; cancelling a derived scope leaves its parent untouched.

    Code holding a scope checks it at its suspension points (``sleep``,
    ``wait_for``, ``raise_if_cancelled``). Nothing is pre-empted, so a thread
    blocked in an uninterruptible call notices cancellation only when that
    call returns.
    """

    def __init__(self, name: str = "root", parent: CancellationScope | None = None) -> None:
        self.name = name
        self.parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._cause: BaseException | str | None = None
        self._children: list[CancellationScope] = []
        if parent is not None:
            parent._adopt(self)

    def __repr__(self) -> str:
        state = f"cancelled: {self._cause}" if self.cancelled else "active"
        return f"<CancellationScope {self.name} ({state})>"

    # -- state ---------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cause(self) -> BaseException | str | None:
        """The cause recorded by the first ``cancel()``, or None while active."""
        return self._cause

    def derive(self, name: str) -> CancellationScope:
        """Create a child scope that is cancelled whenever this one is."""
        return CancellationScope(name=name, parent=self)

    def cancel(self, cause: BaseException | str | None = None) -> bool:
        """Cancel this scope and all of its descendants.

        Args:
            cause: Failure or reason to record; defaults to ``"cancelled"``.

        Returns:
            True if this call cancelled the scope, False if it already was.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._cause = root_cause(cause) if isinstance(cause, BaseException) else (cause or "cancelled")
            self._event.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel(self._cause)
        return True

    def _adopt(self, child: CancellationScope) -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
            cause = self._cause
        child.cancel(cause)

    # -- suspension points ---------------------------------------------------

    def aborted(self) -> AbortedError:
        """Build the error reported by operations that observe this scope."""
        return AbortedError(self._cause)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise self.aborted()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or *timeout* elapses; return whether cancelled."""
        return self._event.wait(timeout)

    def sleep(self, seconds: float) -> None:
        """Sleep for *seconds* unless cancelled first.

        Raises:
            AbortedError: If the scope is (or becomes) cancelled during the sleep.
        """
        if self._event.wait(seconds):
            raise self.aborted()

    def wait_for(self, gate: threading.Event, poll_interval: float = 1.0) -> None:
        """Block until *gate* is set, re-checking cancellation every poll.

        Raises:
            AbortedError: If the scope is cancelled before the gate opens.
        """
        while True:
            self.raise_if_cancelled()
            if gate.wait(poll_interval):
                self.raise_if_cancelled()
                return
