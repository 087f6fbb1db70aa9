from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

import docker
from docker.errors import DockerException
from docker.models.containers import Container


LOGGER = logging.getLogger("keybench.benchmarks.docker")

DEFAULT_POSTGRES_IMAGE = "postgres:16"
POSTGRES_PORT = "5432/tcp"


class TargetError(RuntimeError):
    """Raised when the system under test cannot be started or rejects a command."""


@dataclass
class PostgresConfig:
    image: str = DEFAULT_POSTGRES_IMAGE
    user: str = "benchmark"
    password: str = "benchmark"
    database: str = "benchmark"
    # Host on which the container's published port is reachable.
    host: str = "localhost"
    data_dir: str = "/var/lib/postgresql/data"
    environment: Dict[str, str] = field(default_factory=dict)

    def container_environment(self) -> Dict[str, str]:
        env = {
            "POSTGRES_USER": self.user,
            "POSTGRES_PASSWORD": self.password,
            "POSTGRES_DB": self.database,
        }
        env.update(self.environment)
        return env


class PostgresManager:
    """Provision a fresh PostgreSQL container per variant using the Docker API."""

    def __init__(
        self,
        config: PostgresConfig,
        network_names: Iterable[str] = (),
        startup_grace_seconds: float = 60.0,
        poll_interval_seconds: float = 1.0,
        client: docker.DockerClient | None = None,
    ) -> None:
        self._config = config
        self._network_names = list(network_names)
        if client is None:
            try:
                client = docker.from_env()
            except DockerException as exc:
                raise TargetError(f"cannot reach the Docker daemon: {exc}") from exc
        self._client = client
        self._containers: List[Container] = []
        self._startup_grace_seconds = startup_grace_seconds
        self._poll_interval_seconds = poll_interval_seconds

    @property
    def config(self) -> PostgresConfig:
        return self._config

    def run(self, label: str) -> contextlib.AbstractContextManager[Container]:
        return _PostgresContext(self, label)

    def address(self, container: Container) -> tuple[str, int]:
        """Host and published port of the container's PostgreSQL listener."""
        try:
            container.reload()
            bindings = container.ports.get(POSTGRES_PORT) or []
        except DockerException as exc:
            raise TargetError(f"cannot inspect container {container.name}: {exc}") from exc
        if not bindings:
            raise TargetError(f"container {container.name} does not publish {POSTGRES_PORT}")
        return self._config.host, int(bindings[0]["HostPort"])

    def _start(self, label: str) -> Container:
        name = f"keybench-postgres-{label}-{int(time.time())}"
        LOGGER.info("Starting PostgreSQL container %s from %s", name, self._config.image)
        try:
            container = self._client.containers.run(
                self._config.image,
                name=name,
                detach=True,
                environment=self._config.container_environment(),
                network=self._primary_network(),
                ports={POSTGRES_PORT: None},
            )
        except DockerException as exc:
            raise TargetError(f"cannot start {self._config.image}: {exc}") from exc
        self._containers.append(container)
        self._attach_additional_networks(container)
        self._wait_for_startup(container)
        return container

    def _stop(self) -> None:
        LOGGER.info("Stopping %d PostgreSQL container(s)", len(self._containers))
        for container in self._containers:
            with contextlib.suppress(Exception):
                container.stop(timeout=10)
            with contextlib.suppress(Exception):
                container.remove(force=True, v=True)
        self._containers.clear()

    def _wait_for_startup(self, container: Container) -> None:
        deadline = time.time() + self._startup_grace_seconds
        while time.time() < deadline:
            if self._is_ready(container):
                return
            time.sleep(self._poll_interval_seconds)
        raise TargetError(
            f"PostgreSQL container {container.name} not ready after "
            f"{self._startup_grace_seconds:.0f}s"
        )

    def _is_ready(self, container: Container) -> bool:
        # The image's init server listens on the unix socket only, so a TCP
        # check passes once the real server is up.
        with contextlib.suppress(Exception):
            result = container.exec_run(
                [
                    "pg_isready",
                    "-h", "127.0.0.1",
                    "-U", self._config.user,
                    "-d", self._config.database,
                ]
            )
            return result.exit_code == 0
        return False

    def _primary_network(self) -> str | None:
        return self._network_names[0] if self._network_names else None

    def _attach_additional_networks(self, container: Container) -> None:
        for network in self._network_names[1:]:
            with contextlib.suppress(Exception):
                self._client.networks.get(network).connect(container)


class _PostgresContext(contextlib.AbstractContextManager):
    def __init__(self, manager: PostgresManager, label: str) -> None:
        self._manager = manager
        self._label = label

    def __enter__(self) -> Container:
        try:
            return self._manager._start(self._label)
        except Exception:
            self._manager._stop()
            raise

    def __exit__(self, exc_type, exc, tb) -> None:
        self._manager._stop()


def block_io_bytes(container: Container) -> tuple[int, int]:
    """Cumulative (read, write) block I/O bytes of a container.

    cgroup v1 reports ``Read``/``Write`` per device, cgroup v2 ``read``/``write``.
    """
    try:
        stats: Mapping[str, Any] = container.stats(stream=False)
    except DockerException as exc:
        raise TargetError(f"cannot read stats of {container.name}: {exc}") from exc
    entries = (stats.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []
    read = write = 0
    for entry in entries:
        op = str(entry.get("op", "")).lower()
        if op == "read":
            read += int(entry.get("value", 0))
        elif op == "write":
            write += int(entry.get("value", 0))
    return read, write
