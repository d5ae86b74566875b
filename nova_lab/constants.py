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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# -- Resolved paths --
PACKAGE_DIR = Path(__file__).resolve().parent
NOVA_HOME = Path.home() / ".nova"


def load_dependencies() -> dict:
    """Load pinned images and per-tier Helm releases from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = PACKAGE_DIR / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- Tiers --
MIN_TIER = 0
MAX_TIER = 3
WARMUP_TIER = 3
TIER_NAMES = {
    0: "Cluster substrate",
    1: "Infrastructure",
    2: "Platform services",
    3: "Applications",
}

# -- Node labels and taints --
LABEL_NODE_TYPE = "nova.local/node-type"
NODE_TYPE_GPU = "gpu-nvidia"
NODE_TYPE_CPU = "cpu"
LABEL_ELECTED_NODE = "nova.local/llmd-node"
LABEL_GPU_OPERANDS = "nvidia.com/gpu.deploy.operands"
LABEL_GPU_COUNT = "nvidia.com/gpu.count"
LABEL_CONTROL_PLANE = "node-role.kubernetes.io/control-plane"
LABEL_MASTER = "node-role.kubernetes.io/master"
TAINT_EFFECT_NO_SCHEDULE = "NoSchedule"

# -- Containers --
CONTAINER_REGISTRY = "nova-registry"
CONTAINER_BIND9 = "nova-bind9-dns"
CONTAINER_NGINX = "nova-nginx-gateway"
REGISTRY_PORT = 5000
REGISTRY_CERT_FILE = "registry.crt"
REGISTRY_KEY_FILE = "registry.key"
REGISTRY_CONTAINER_CERT_DIR = "/certs"
COMBINED_CA_CONTAINER_PATH = "/etc/ssl/certs/combined-ca-bundle.crt"
SYSTEM_CA_LOCATIONS = (
    "/etc/ssl/certs/ca-certificates.crt",
    "/etc/pki/tls/certs/ca-bundle.crt",
    "/etc/ssl/ca-bundle.pem",
    "/etc/ssl/cert.pem",
)
MKCERT_CA_FILE = "rootCA.pem"

# -- Image copy retry --
# Substrings of copy errors that indicate a transient transport failure.
TRANSIENT_ERROR_MARKERS = (
    "connection reset",
    "EOF",
    "connection refused",
    "broken pipe",
    "MANIFEST_UNKNOWN",
    "timeout",
)
DEFAULT_COPY_MAX_ATTEMPTS = 3
DEFAULT_COPY_BACKOFF_SECONDS = 30
DEFAULT_COPY_TIMEOUT_SECONDS = 60 * 60
DEFAULT_NODE_PULL_TIMEOUT_SECONDS = 30 * 60
DEFAULT_REGISTRY_SETTLE_SECONDS = 2
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
SKOPEO_RETRY_TIMES = 3

# -- Cluster defaults --
DEFAULT_PROFILE = "nova"
DEFAULT_NODES = 3
DEFAULT_CPUS = 4
DEFAULT_MEMORY = "8g"
DEFAULT_GPUS = "all"
DEFAULT_KUBERNETES_VERSION = "v1.33.5"
DEFAULT_MODEL = "Qwen/Qwen3-0.6B"
DEFAULT_MODEL_SLUG = "unknown-model"
DEFAULT_NETWORK = "nova"
DEFAULT_REGISTRY_HOST = f"registry.local:{REGISTRY_PORT}"
DEFAULT_MODELS_DIR = NOVA_HOME / "share" / "nfs" / "models"
DEFAULT_REGISTRY_CERT_DIR = NOVA_HOME / "registry-certs"
NODES_READY_TIMEOUT = "5m"
HELM_TIMEOUT = "10m"
