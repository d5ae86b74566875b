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

"""Configuration classes and config models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from nova_lab.constants import (
    DEFAULT_COPY_BACKOFF_SECONDS,
    DEFAULT_COPY_MAX_ATTEMPTS,
    DEFAULT_COPY_TIMEOUT_SECONDS,
    DEFAULT_CPUS,
    DEFAULT_GPUS,
    DEFAULT_KUBERNETES_VERSION,
    DEFAULT_MEMORY,
    DEFAULT_MODEL,
    DEFAULT_MODEL_SLUG,
    DEFAULT_MODELS_DIR,
    DEFAULT_NETWORK,
    DEFAULT_NODE_PULL_TIMEOUT_SECONDS,
    DEFAULT_NODES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_PROFILE,
    DEFAULT_REGISTRY_CERT_DIR,
    DEFAULT_REGISTRY_HOST,
    DEFAULT_REGISTRY_SETTLE_SECONDS,
)

_GPU_DISABLED_VALUES = ("", "none", "disabled")


# ============================================================================
# Configuration classes
# ============================================================================

class ClusterConfig(BaseSettings):
    """Minikube cluster configuration, auto-loaded from NOVA_* env vars.

    Attributes:
        profile: Minikube profile name.
        nodes: Total node count (1 control plane + N-1 workers).
        cpus: CPUs per node.
        memory: Memory per node.
        gpus: GPU passthrough mode (``all``, ``none``, ``disabled``).
        cpu_mode_forced: Whether CPU mode is forced even when a GPU is present.
        kubernetes_version: Kubernetes version to run.
    """

    model_config = SettingsConfigDict(env_prefix="NOVA_", extra="ignore")

    profile: str = DEFAULT_PROFILE
    nodes: int = Field(default=DEFAULT_NODES, ge=1, le=10)
    cpus: int = Field(default=DEFAULT_CPUS, ge=2)
    memory: str = Field(default=DEFAULT_MEMORY, pattern=r"^\d+[mMgG]?$")
    gpus: str = DEFAULT_GPUS
    cpu_mode_forced: bool = False
    kubernetes_version: str = Field(default=DEFAULT_KUBERNETES_VERSION, pattern=r"^v[\d.]+$")

    @property
    def has_gpu(self) -> bool:
        return self.gpus not in _GPU_DISABLED_VALUES

    @property
    def is_gpu_mode(self) -> bool:
        """GPU mode requires a configured GPU and no forced CPU mode."""
        return self.has_gpu and not self.cpu_mode_forced

    @property
    def worker_nodes(self) -> int:
        return max(self.nodes - 1, 0)


class LLMConfig(BaseSettings):
    """Model selection, auto-loaded from NOVA_* env vars.

    Attributes:
        model: Hugging Face model id, or empty to skip model warmup.
        hf_token: Optional Hugging Face token for gated or faster downloads.
    """

    model_config = SettingsConfigDict(env_prefix="NOVA_", extra="ignore")

    model: str = DEFAULT_MODEL
    hf_token: str = ""


class WarmupConfig(BaseSettings):
    """Warmup tuning, auto-loaded from NOVA_* env vars.

    Attributes:
        models_dir: Host directory holding one cache directory per model slug.
        registry_host: Mirror registry host as seen from nodes and the copier.
        registry_network: Docker network shared by the registry and the cluster.
        registry_cert_dir: Host directory with the registry TLS certificate.
        copy_max_attempts: Maximum attempts for the mirror copy step.
        copy_backoff_seconds: Backoff unit; attempt N waits N times this value.
        copy_timeout_seconds: Timeout for a single copy attempt.
        node_pull_timeout_seconds: Timeout for pulling onto the elected node.
        registry_settle_seconds: Pause after (re)starting the registry.
        poll_interval_seconds: How often waiting code re-checks cancellation.
        skip_tls_verify: Whether the copier skips TLS verification.
    """

    model_config = SettingsConfigDict(env_prefix="NOVA_", extra="ignore")

    models_dir: Path = DEFAULT_MODELS_DIR
    registry_host: str = DEFAULT_REGISTRY_HOST
    registry_network: str = DEFAULT_NETWORK
    registry_cert_dir: Path = DEFAULT_REGISTRY_CERT_DIR
    copy_max_attempts: int = Field(default=DEFAULT_COPY_MAX_ATTEMPTS, ge=1, le=DEFAULT_COPY_MAX_ATTEMPTS)
    copy_backoff_seconds: float = Field(default=DEFAULT_COPY_BACKOFF_SECONDS, ge=0)
    copy_timeout_seconds: float = Field(default=DEFAULT_COPY_TIMEOUT_SECONDS, gt=0)
    node_pull_timeout_seconds: float = Field(default=DEFAULT_NODE_PULL_TIMEOUT_SECONDS, gt=0)
    registry_settle_seconds: float = Field(default=DEFAULT_REGISTRY_SETTLE_SECONDS, ge=0)
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    skip_tls_verify: bool = False


# ============================================================================
# Settings bundle
# ============================================================================

@dataclass(frozen=True)
class LabSettings:
    """All configuration for one deployment run.

    Attributes:
        cluster: Cluster topology and acceleration settings.
        llm: Model selection.
        warmup: Warmup tuning.
    """

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    warmup: WarmupConfig = field(default_factory=WarmupConfig)


def model_slug(model: str) -> str:
    """Build a Kubernetes-safe slug from a model id.

    ``Qwen/Qwen3-0.6B`` becomes ``qwen3-0-6b``.

    Args:
        model: Hugging Face model id.

    Returns:
        Lowercase slug containing only ``[a-z0-9-]``.
    """
    name = model.rsplit("/", 1)[-1].lower()
    name = name.replace(".", "-").replace("_", "-")
    slug = re.sub(r"[^a-z0-9-]", "", name)
    return slug or DEFAULT_MODEL_SLUG


def model_cache_path(settings: LabSettings) -> Path:
    """Return the cache directory for the configured model."""
    return Path(settings.warmup.models_dir).expanduser() / model_slug(settings.llm.model)
