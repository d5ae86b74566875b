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

"""Streaming image copy into the mirror registry via a skopeo container."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path

import docker
import sh

from nova_lab.cancellation import CancellationScope
from nova_lab.constants import (
    COMBINED_CA_CONTAINER_PATH,
    MKCERT_CA_FILE,
    SKOPEO_RETRY_TIMES,
    SYSTEM_CA_LOCATIONS,
    dep_value,
)
from nova_lab.context import RunContext
from nova_lab.errors import CommandError
from nova_lab.registry import MirrorRegistry
from nova_lab.utils import run_container


@dataclass(frozen=True)
class TlsOptions:
    """Destination TLS options for a copy.

    Attributes:
        skip_tls_verify: Skip TLS verification of the destination registry.
        insecure_dest: Treat the destination as an insecure registry without credentials.
    """

    skip_tls_verify: bool = False
    insecure_dest: bool = False


def mkcert_ca_path() -> Path:
    """Locate the mkcert root CA certificate."""
    try:
        caroot = str(sh.mkcert("-CAROOT")).strip()
    except (sh.ErrorReturnCode, sh.CommandNotFound) as err:
        raise CommandError("mkcert -CAROOT", None, str(err)) from err
    return Path(caroot) / MKCERT_CA_FILE


def write_combined_ca_bundle(custom_ca: Path) -> Path:
    """Write system CAs followed by *custom_ca* into a temporary bundle.

    The bundle lets skopeo verify both public registries and the local one.

    Returns:
        Path of the temporary bundle; the caller deletes it.
    """
    system_ca = b""
    for location in SYSTEM_CA_LOCATIONS:
        path = Path(location)
        if path.exists():
            system_ca = path.read_bytes()
            break

    tmp = tempfile.NamedTemporaryFile(delete=False, prefix="combined-ca-", suffix=".crt")
    try:
        if system_ca:
            tmp.write(system_ca + b"\n")
        tmp.write(custom_ca.read_bytes())
    finally:
        tmp.close()
    return Path(tmp.name)


class SkopeoCopier:
    """Copy images layer by layer without loading them into this process.

    skopeo runs in a throwaway container on the lab network with the
    registry host name mapped to the registry container's IP.
    """

    def __init__(
        self,
        ctx: RunContext,
        registry: MirrorRegistry,
        docker_client: docker.DockerClient | None = None,
    ) -> None:
        self._ctx = ctx
        self._registry = registry
        self._client = docker_client
        self._log = ctx.child_logger("skopeo")

    def copy(
        self,
        scope: CancellationScope,
        source: str,
        dest_registry: str,
        dest_image: str,
        tls: TlsOptions | None = None,
    ) -> None:
        """Copy *source* to ``dest_registry/dest_image``.

        Raises:
            AbortedError: If the scope is cancelled while copying.
            CommandError: If skopeo exits non-zero; the message carries its output.
            RegistryError: If the registry container cannot be located.
        """
        tls = tls or TlsOptions()
        cfg = self._ctx.settings.warmup
        source_ref = f"docker://{source}"
        dest_ref = f"docker://{dest_registry}/{dest_image}"
        self._log.debug("skopeo copy %s -> %s", source_ref, dest_ref)

        registry_ip = self._registry.container_ip()
        registry_name = dest_registry.split(":", 1)[0]

        args = ["copy", "--retry-times", str(SKOPEO_RETRY_TIMES)]
        if tls.skip_tls_verify:
            args.append("--dest-tls-verify=false")
        if tls.insecure_dest:
            args.append("--dest-no-creds")
        args += [source_ref, dest_ref]

        run_kwargs: dict = {
            "network": cfg.registry_network,
            "extra_hosts": {registry_name: registry_ip},
        }
        bundle: Path | None = None
        if not tls.skip_tls_verify:
            bundle = write_combined_ca_bundle(mkcert_ca_path())
            run_kwargs["volumes"] = {str(bundle): {"bind": COMBINED_CA_CONTAINER_PATH, "mode": "ro"}}
            run_kwargs["environment"] = [f"SSL_CERT_FILE={COMBINED_CA_CONTAINER_PATH}"]

        try:
            run_container(
                self._docker(),
                scope,
                dep_value("images", "skopeo", default="quay.io/skopeo/stable:latest"),
                args,
                timeout=cfg.copy_timeout_seconds,
                poll_interval=cfg.poll_interval_seconds,
                **run_kwargs,
            )
        finally:
            if bundle is not None:
                bundle.unlink(missing_ok=True)
        self._log.debug("Image copied to %s", dest_ref)

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client
