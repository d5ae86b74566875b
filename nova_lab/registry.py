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

"""Local mirror registry container used to stream images to cluster nodes."""

from __future__ import annotations

from pathlib import Path

import docker
import sh
from rich.panel import Panel

from nova_lab.constants import (
    CONTAINER_REGISTRY,
    REGISTRY_CERT_FILE,
    REGISTRY_CONTAINER_CERT_DIR,
    REGISTRY_KEY_FILE,
    REGISTRY_PORT,
    dep_value,
)
from nova_lab.context import RunContext
from nova_lab.errors import RegistryError


class MirrorRegistry:
    """Manage the ``registry:2`` container that mirrors images for the cluster.

    The registry always serves TLS on the lab network, with a certificate
    generated by mkcert into the configured cert directory on first start.
    Image data lives inside the container; only certificates are kept on the
    host.
    """

    def __init__(self, ctx: RunContext, docker_client: docker.DockerClient | None = None) -> None:
        self._ctx = ctx
        self._client = docker_client
        self._cfg = ctx.settings.warmup
        self._log = ctx.child_logger("registry")

    @property
    def host(self) -> str:
        return self._cfg.registry_host

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except docker.errors.DockerException as err:
                raise RegistryError(f"failed to connect to Docker: {err}") from err
        return self._client

    def _container(self):
        try:
            return self._docker().containers.get(CONTAINER_REGISTRY)
        except docker.errors.NotFound:
            return None
        except docker.errors.DockerException as err:
            raise RegistryError(f"failed to inspect registry container: {err}") from err

    def is_running(self) -> bool:
        """Return True if the registry container exists and is running.

        Raises:
            RegistryError: If Docker cannot be queried.
        """
        container = self._container()
        return container is not None and container.status == "running"

    def ensure_certificate(self) -> Path:
        """Generate the registry TLS pair with mkcert unless it already exists.

        The certificate is signed by the mkcert CA that the copier trusts, and
        covers the registry host name as well as loopback.

        Returns:
            The certificate directory.

        Raises:
            RegistryError: If mkcert is missing or fails.
        """
        cert_dir = Path(self._cfg.registry_cert_dir).expanduser()
        cert_dir.mkdir(parents=True, exist_ok=True)
        cert_file = cert_dir / REGISTRY_CERT_FILE
        key_file = cert_dir / REGISTRY_KEY_FILE
        if cert_file.exists() and key_file.exists():
            self._log.debug("Using existing registry TLS certificate")
            return cert_dir

        self._ctx.console.print("[yellow]ℹ️  Generating TLS certificate for registry...[/yellow]")
        hosts = [self.host.split(":", 1)[0], CONTAINER_REGISTRY, "localhost", "127.0.0.1"]
        try:
            sh.mkcert("-cert-file", str(cert_file), "-key-file", str(key_file), *dict.fromkeys(hosts))
        except (sh.ErrorReturnCode, sh.CommandNotFound) as err:
            raise RegistryError(f"failed to generate registry certificate: {err}") from err
        return cert_dir

    def start(self) -> None:
        """Start the registry with TLS, replacing a stopped container if one exists.

        Raises:
            RegistryError: If the certificate or the container cannot be set up.
        """
        container = self._container()
        if container is not None and container.status == "running":
            self._log.debug("Registry already running")
            return

        console = self._ctx.console
        console.print(Panel.fit("Starting local mirror registry", style="bold blue"))
        if container is not None:
            console.print("[yellow]   Removing stopped registry container[/yellow]")
            try:
                container.remove(force=True)
            except docker.errors.DockerException as err:
                raise RegistryError(f"failed to remove existing registry container: {err}") from err

        cert_dir = self.ensure_certificate()
        environment = [
            f"REGISTRY_HTTP_TLS_CERTIFICATE={REGISTRY_CONTAINER_CERT_DIR}/{REGISTRY_CERT_FILE}",
            f"REGISTRY_HTTP_TLS_KEY={REGISTRY_CONTAINER_CERT_DIR}/{REGISTRY_KEY_FILE}",
        ]

        try:
            self._docker().containers.run(
                dep_value("images", "registry", default="registry:2"),
                name=CONTAINER_REGISTRY,
                detach=True,
                network=self._cfg.registry_network,
                volumes={str(cert_dir): {"bind": REGISTRY_CONTAINER_CERT_DIR, "mode": "ro"}},
                environment=environment,
                restart_policy={"Name": "unless-stopped"},
            )
        except docker.errors.DockerException as err:
            raise RegistryError(f"failed to start registry container: {err}") from err
        console.print(f"[green]✅ Local registry started on port {REGISTRY_PORT} (TLS enabled)[/green]")

    def stop(self) -> None:
        container = self._container()
        if container is None:
            self._ctx.console.print("[yellow]   No registry container found[/yellow]")
            return
        try:
            container.stop()
        except docker.errors.DockerException as err:
            raise RegistryError(f"failed to stop registry: {err}") from err
        self._ctx.console.print("[green]✅ Local registry stopped[/green]")

    def delete(self) -> None:
        container = self._container()
        if container is None:
            return
        try:
            container.remove(force=True)
        except docker.errors.DockerException as err:
            raise RegistryError(f"failed to remove registry: {err}") from err
        self._ctx.console.print("[green]✅ Local registry deleted[/green]")

    def container_ip(self) -> str:
        """Return the registry container's IP address on the lab network.

        Raises:
            RegistryError: If the container is missing or not on the network.
        """
        container = self._container()
        if container is None:
            raise RegistryError("registry container not found")
        networks = container.attrs.get("NetworkSettings", {}).get("Networks", {})
        ip = networks.get(self._cfg.registry_network, {}).get("IPAddress", "")
        if not ip:
            raise RegistryError(f"registry container not found on {self._cfg.registry_network} network")
        return ip
