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
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import FakeCluster, FakeCopier, FakeRegistry, cancel_later
from nova_lab.cancellation import CancellationScope
from nova_lab.election import ElectedNode, Topology
from nova_lab.errors import AbortedError, CommandError, ImageWarmupError, RegistryError
from nova_lab.images import ImagePrestager, should_retry_copy, start_image_warmup

IMAGE = "ghcr.io/llm-d/llm-d-cuda:v0.4.0"
ELECTED = ElectedNode("nova-m02", Topology.MULTI_NODE_GPU)


def _prestager(ctx, copier, *, elected=ELECTED, registry=None, cluster=None):
    return ImagePrestager(
        ctx,
        elected,
        registry=registry or FakeRegistry(),
        copier=copier,
        nodes=cluster or FakeCluster(["nova-m02"]),
        image=IMAGE,
    )


def test_transient_failures_then_success(ctx):
    copier = FakeCopier([CommandError("skopeo copy", 1, "read: connection reset by peer")] * 2 + [None])
    cluster = FakeCluster(["nova-m02"])
    scope = CancellationScope()

    result = _prestager(ctx, copier, cluster=cluster).run(scope)

    assert result.success
    assert result.attempts == 3
    assert result.node == "nova-m02"
    assert not scope.cancelled
    assert copier.calls[0] == (IMAGE, "registry.local:5000", "llm-d/llm-d-cuda:v0.4.0")
    assert cluster.commands == [
        ("nova-m02", "docker pull registry.local:5000/llm-d/llm-d-cuda:v0.4.0"),
        ("nova-m02", f"docker tag registry.local:5000/llm-d/llm-d-cuda:v0.4.0 {IMAGE}"),
    ]


def test_non_retryable_error_fails_after_one_attempt(ctx):
    copier = FakeCopier([CommandError("skopeo copy", 1, "permission denied")])
    scope = CancellationScope()

    result = _prestager(ctx, copier).run(scope)

    assert not result.success
    assert result.attempts == 1
    assert len(copier.calls) == 1
    assert isinstance(result.error, ImageWarmupError)
    assert scope.cancelled
    assert scope.cause is result.error


def test_copy_never_exceeds_three_attempts(ctx):
    copier = FakeCopier([CommandError("skopeo copy", 1, "unexpected EOF")] * 10)
    scope = CancellationScope()

    prestager = _prestager(ctx, copier)
    result = prestager.run(scope)

    assert not result.success
    assert len(copier.calls) == 3
    assert prestager.retry_state.attempt == 3
    assert result.error.attempts == 3
    assert scope.cancelled


def test_backoff_grows_with_attempt_number(make_ctx):
    ctx = make_ctx(copy_backoff_seconds=0.01)
    copier = FakeCopier([CommandError("skopeo copy", 1, "i/o timeout")] * 2 + [None])

    prestager = _prestager(ctx, copier)
    assert prestager.run(CancellationScope()).success
    assert prestager.retry_state.delay == pytest.approx(0.02)


def test_cancellation_during_backoff_stops_retrying(make_ctx):
    ctx = make_ctx(copy_backoff_seconds=30)
    copier = FakeCopier([CommandError("skopeo copy", 1, "connection refused")] * 3)
    scope = CancellationScope()
    cancel_later(scope, "model download failed")

    started = time.monotonic()
    result = _prestager(ctx, copier).run(scope)

    assert time.monotonic() - started < 10
    assert not result.success
    assert isinstance(result.error, AbortedError)
    assert len(copier.calls) == 1
    assert scope.cause == "model download failed"


def test_registry_restarted_before_attempt(ctx):
    registry = FakeRegistry(running=False)
    result = _prestager(ctx, FakeCopier(), registry=registry).run(CancellationScope())
    assert result.success
    assert registry.starts == 1


class _RegistryDroppingCopier(FakeCopier):
    """First copy fails transiently and takes the registry down with it."""

    def __init__(self, registry):
        super().__init__()
        self.registry = registry

    def copy(self, scope, source, dest_registry, dest_image, tls=None):
        super().copy(scope, source, dest_registry, dest_image, tls)
        if len(self.calls) == 1:
            self.registry.running = False
            raise CommandError("skopeo copy", 1, "dial tcp: connection refused")


def test_registry_rechecked_between_attempts(ctx):
    registry = FakeRegistry(running=True)
    copier = _RegistryDroppingCopier(registry)
    scope = CancellationScope()

    prestager = _prestager(ctx, copier, registry=registry)
    result = prestager.run(scope)

    assert result.success
    assert result.attempts == 2
    assert len(copier.calls) == 2
    assert registry.starts == 1
    assert registry.running
    assert not scope.cancelled


def test_registry_start_failure_fails_task(ctx):
    registry = FakeRegistry(running=False, start_error=RegistryError("failed to start registry container"))
    scope = CancellationScope()
    result = _prestager(ctx, FakeCopier(), registry=registry).run(scope)
    assert not result.success
    assert isinstance(result.error, RegistryError)
    assert scope.cancelled


def test_no_elected_node_is_a_soft_skip(ctx):
    copier = FakeCopier()
    scope = CancellationScope()
    result = _prestager(ctx, copier, elected=None).run(scope)
    assert result.success
    assert result.node is None
    assert copier.calls == []
    assert not scope.cancelled


def test_node_pull_failure_cancels_scope(ctx):
    cluster = FakeCluster(["nova-m02"])
    cluster.ssh_error = CommandError("minikube ssh", 1, "no space left on device")
    scope = CancellationScope()
    result = _prestager(ctx, FakeCopier(), cluster=cluster).run(scope)
    assert not result.success
    assert scope.cancelled


@pytest.mark.parametrize(
    ("err", "expected"),
    [
        (CommandError("skopeo", 1, "writing blob: broken pipe"), True),
        (CommandError("skopeo", 1, "MANIFEST_UNKNOWN: manifest unknown"), True),
        (RegistryError("failed to start registry container"), True),
        (CommandError("skopeo", 1, "unauthorized: authentication required"), False),
        (AbortedError("connection reset"), False),
    ],
)
def test_should_retry_copy(err, expected):
    assert should_retry_copy(err) is expected


def test_start_is_skipped_without_gpu_mode(make_ctx):
    ctx = make_ctx(cpu_mode=True)
    with ThreadPoolExecutor(max_workers=1) as executor:
        join = start_image_warmup(
            ctx, CancellationScope(), executor,
            nodes=FakeCluster([]), registry=FakeRegistry(), copier=FakeCopier(), elected=lambda: ELECTED,
        )
    assert join is None


def test_start_waits_for_cluster_then_uses_elected_node(ctx):
    ready = threading.Event()
    copier = FakeCopier()
    cluster = FakeCluster(["nova-m02"])
    handed_over = {}
    with ThreadPoolExecutor(max_workers=1) as executor:
        join = start_image_warmup(
            ctx, CancellationScope(), executor,
            nodes=cluster, registry=FakeRegistry(), copier=copier,
            elected=lambda: handed_over["node"], cluster_ready=ready,
        )
        time.sleep(0.05)
        assert copier.calls == []
        handed_over["node"] = ELECTED
        ready.set()
        result = join()
    assert result.success
    assert result.node == "nova-m02"
    assert cluster.commands[0][0] == "nova-m02"


def test_start_without_elected_node_skips_distribution(ctx):
    cluster = FakeCluster(["nova", "nova-m02"])
    copier = FakeCopier()
    with ThreadPoolExecutor(max_workers=1) as executor:
        result = start_image_warmup(
            ctx, CancellationScope(), executor,
            nodes=cluster, registry=FakeRegistry(), copier=copier, elected=lambda: None,
        )()
    assert result.success
    assert result.node is None
    assert copier.calls == []
    assert cluster.commands == []


def test_start_cancelled_before_cluster_ready_is_aborted(ctx):
    scope = CancellationScope()
    resolved = []
    with ThreadPoolExecutor(max_workers=1) as executor:
        join = start_image_warmup(
            ctx, scope, executor,
            nodes=FakeCluster([]), registry=FakeRegistry(), copier=FakeCopier(),
            elected=lambda: resolved.append(True), cluster_ready=threading.Event(),
        )
        scope.cancel("tier 0 failed")
        result = join()
    assert not result.success
    assert isinstance(result.error, AbortedError)
    assert resolved == []
