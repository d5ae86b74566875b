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


from concurrent.futures import ThreadPoolExecutor

from conftest import FakeDownloader
from nova_lab.cancellation import CancellationScope
from nova_lab.errors import AbortedError, ModelDownloadError
from nova_lab.model import ModelWarmup, start_model_warmup


def test_populated_cache_skips_download(ctx):
    task = ModelWarmup(ctx, FakeDownloader())
    task.path.mkdir(parents=True)
    (task.path / "config.json").write_text("{}")

    result = task.run(CancellationScope())
    assert result.success and result.cached
    assert task._downloader.calls == 0


def test_second_run_after_download_does_not_download_again(ctx):
    downloader = FakeDownloader()
    scope = CancellationScope()

    first = ModelWarmup(ctx, downloader).run(scope)
    second = ModelWarmup(ctx, downloader).run(scope)

    assert first.success and not first.cached
    assert second.success and second.cached
    assert downloader.calls == 1
    assert first.path.name == "model"


def test_download_failure_cancels_scope(ctx):
    scope = CancellationScope()
    result = ModelWarmup(ctx, FakeDownloader(error=RuntimeError("401 unauthorized"))).run(scope)

    assert not result.success
    assert isinstance(result.error, ModelDownloadError)
    assert scope.cancelled
    assert scope.cause is result.error
    assert "401 unauthorized" in str(scope.cause)


def test_empty_download_is_a_failure(ctx):
    scope = CancellationScope()
    result = ModelWarmup(ctx, FakeDownloader(write=False)).run(scope)
    assert not result.success
    assert scope.cancelled


def test_cancelled_scope_abandons_download_without_recancelling(ctx):
    scope = CancellationScope()
    scope.cancel("image warmup failed")
    downloader = FakeDownloader()

    result = ModelWarmup(ctx, downloader).run(scope)

    assert not result.success
    assert isinstance(result.error, AbortedError)
    assert scope.cause == "image warmup failed"
    assert downloader.calls == 0


def test_start_without_model_returns_none(make_ctx):
    ctx = make_ctx(model="")
    with ThreadPoolExecutor(max_workers=1) as executor:
        assert start_model_warmup(ctx, CancellationScope(), executor, FakeDownloader()) is None


def test_start_runs_download_in_background(ctx):
    with ThreadPoolExecutor(max_workers=1) as executor:
        join = start_model_warmup(ctx, CancellationScope(), executor, FakeDownloader())
        result = join()
    assert result.success
    assert (result.path / "model.safetensors").exists()


def test_start_with_cached_model_resolves_immediately(ctx):
    task = ModelWarmup(ctx, FakeDownloader())
    task.path.mkdir(parents=True)
    (task.path / "weights").write_text("x")

    class _NoExecutor:
        def submit(self, *args, **kwargs):
            raise AssertionError("cached model must not be scheduled")

    result = start_model_warmup(ctx, CancellationScope(), _NoExecutor(), FakeDownloader())()
    assert result.cached
