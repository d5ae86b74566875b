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


import time

import pytest

from conftest import cancel_later
from nova_lab.cancellation import CancellationScope
from nova_lab.errors import AbortedError, CommandError
from nova_lab.utils import (
    directory_size,
    extract_registry_image_name,
    is_populated_dir,
    is_retryable_error,
    run_cancellable,
)


@pytest.mark.parametrize(
    ("image", "expected"),
    [
        ("ghcr.io/llm-d/llm-d-cuda:v0.4.0", "llm-d/llm-d-cuda:v0.4.0"),
        ("quay.io/a/b/c:1", "a/b/c:1"),
        ("library/nginx:latest", "library/nginx:latest"),
        ("nginx", "nginx"),
    ],
)
def test_extract_registry_image_name(image, expected):
    assert extract_registry_image_name(image) == expected


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("read tcp: connection reset by peer", True),
        ("unexpected EOF", True),
        ("dial tcp 10.0.0.2:5000: connection refused", True),
        ("write: broken pipe", True),
        ("MANIFEST_UNKNOWN: manifest unknown", True),
        ("net/http: TLS handshake timeout", True),
        ("unauthorized: authentication required", False),
        ("Connection Reset", False),
    ],
)
def test_is_retryable_error(text, expected):
    assert is_retryable_error(RuntimeError(text)) is expected


def test_is_populated_dir(tmp_path):
    assert not is_populated_dir(tmp_path / "missing")
    assert not is_populated_dir(tmp_path)
    (tmp_path / "f").write_text("x")
    assert is_populated_dir(tmp_path)


def test_directory_size(tmp_path):
    (tmp_path / "a").write_bytes(b"x" * 10)
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b").write_bytes(b"x" * 2048)
    assert directory_size(tmp_path) == "2.0K"


def test_run_cancellable_returns_output():
    assert run_cancellable(["sh", "-c", "echo hello"], CancellationScope(), poll_interval=0.05).strip() == "hello"


def test_run_cancellable_raises_on_failure():
    with pytest.raises(CommandError, match="exit 3") as excinfo:
        run_cancellable(["sh", "-c", "echo nope; exit 3"], CancellationScope(), poll_interval=0.05)
    assert "nope" in excinfo.value.output


def test_run_cancellable_kills_on_cancel():
    scope = CancellationScope()
    cancel_later(scope, "model download failed")
    started = time.monotonic()
    with pytest.raises(AbortedError, match="model download failed"):
        run_cancellable(["sleep", "30"], scope, poll_interval=0.05)
    assert time.monotonic() - started < 10


def test_run_cancellable_times_out():
    with pytest.raises(CommandError, match="timeout after"):
        run_cancellable(["sleep", "30"], CancellationScope(), timeout=0.2, poll_interval=0.05)


def test_run_cancellable_missing_binary():
    with pytest.raises(CommandError):
        run_cancellable(["definitely-not-a-real-binary-nova"], CancellationScope())
