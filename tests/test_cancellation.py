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


import threading
import time

import pytest

from conftest import cancel_later
from nova_lab.cancellation import CancellationScope
from nova_lab.errors import AbortedError


def test_cancel_is_one_way_and_idempotent():
    scope = CancellationScope()
    assert not scope.cancelled
    assert scope.cancel("first") is True
    assert scope.cancel("second") is False
    assert scope.cancelled
    assert scope.cause == "first"


def test_cancel_without_cause_records_default():
    scope = CancellationScope()
    scope.cancel()
    assert scope.cause == "cancelled"


def test_parent_cancellation_reaches_descendants():
    root = CancellationScope()
    child = root.derive("child")
    grandchild = child.derive("grandchild")
    err = ValueError("boom")
    root.cancel(err)
    assert child.cancelled and grandchild.cancelled
    assert grandchild.cause is err


def test_child_cancellation_leaves_parent_active():
    root = CancellationScope()
    child = root.derive("child")
    child.cancel("child only")
    assert child.cancelled
    assert not root.cancelled


def test_deriving_from_cancelled_scope_starts_cancelled():
    root = CancellationScope()
    root.cancel("gone")
    assert root.derive("late").cause == "gone"


def test_cancel_unwraps_aborted_cause():
    original = RuntimeError("download failed")
    scope = CancellationScope()
    scope.cancel(AbortedError(AbortedError(original)))
    assert scope.cause is original
    assert str(scope.aborted()) == "aborted: download failed"


def test_concurrent_cancels_record_exactly_one_winner():
    scope = CancellationScope()
    barrier = threading.Barrier(16)
    wins = []

    def _cancel(i):
        barrier.wait()
        wins.append(scope.cancel(f"cause-{i}"))

    threads = [threading.Thread(target=_cancel, args=(i,)) for i in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert wins.count(True) == 1
    assert scope.cause.startswith("cause-")


def test_sleep_is_interrupted_by_cancellation():
    scope = CancellationScope()
    cancel_later(scope, "stop")
    started = time.monotonic()
    with pytest.raises(AbortedError, match="stop"):
        scope.sleep(10)
    assert time.monotonic() - started < 5


def test_sleep_completes_when_not_cancelled():
    CancellationScope().sleep(0)


def test_raise_if_cancelled():
    scope = CancellationScope()
    scope.raise_if_cancelled()
    scope.cancel("done")
    with pytest.raises(AbortedError):
        scope.raise_if_cancelled()


def test_wait_for_returns_when_gate_opens():
    scope = CancellationScope()
    gate = threading.Event()
    threading.Timer(0.05, gate.set).start()
    scope.wait_for(gate, poll_interval=0.01)
    assert gate.is_set()


def test_wait_for_aborts_on_cancellation():
    scope = CancellationScope()
    cancel_later(scope, "tier 0 failed")
    with pytest.raises(AbortedError, match="tier 0 failed"):
        scope.wait_for(threading.Event(), poll_interval=0.01)
