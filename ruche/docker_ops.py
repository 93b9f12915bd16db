from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable

import docker
from docker.errors import DockerException, NotFound

from .errors import UpstreamFailure
from .models import NodeInfo
from .settings import Settings

logger = logging.getLogger(__name__)

NODE_DATA_DIR = "/home/bee/.bee"
API_HOST_IP = "127.0.0.1"
P2P_HOST_IP = "0.0.0.0"


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class ContainerSpec:
    """Everything needed to create one node container."""

    name: str
    image: str
    command: list[str]
    environment: dict[str, str]
    volumes: dict[str, dict[str, str]]
    ports: dict[str, tuple[str, int]]
    restart_policy: dict[str, str]
    user: str | None = None
    extra_hosts: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)


def build_container_spec(node: NodeInfo, settings: Settings) -> ContainerSpec:
    """Container specification for a node.

    The data directory is bind-mounted on NODE_DATA_DIR, the API port is only
    reachable from the host loopback while the P2P port is published on every
    interface. The container restarts unless stopped by hand.
    """
    environment = {
        "BEE_API_ADDR": f"0.0.0.0:{node.api_port}",
        "BEE_BLOCKCHAIN_RPC_ENDPOINT": settings.gno_rpc,
        "BEE_DATA_DIR": NODE_DATA_DIR,
        "BEE_FULL_NODE": _flag(node.full_node),
        "BEE_NAT_ADDR": f"{settings.nat_addr}:{node.p2p_port}",
        "BEE_P2P_ADDR": f":{node.p2p_port}",
        "BEE_PASSWORD": settings.node_password,
        "BEE_RESERVE_CAPACITY_DOUBLING": _flag(node.reserve_doubling),
        "BEE_RESOLVER_OPTIONS": settings.eth_rpc,
        "BEE_SWAP_ENABLE": _flag(node.swap_enable),
        "BEE_TARGET_NEIGHBORHOOD": node.neighborhood,
        "BEE_WELCOME_MESSAGE": settings.welcome_msg,
    }

    user = None
    if hasattr(os, "getuid"):
        # Keep files written to the bind mount owned by the operator.
        user = f"{os.getuid()}:{os.getgid()}"

    extra_hosts: dict[str, str] = {}
    if settings.use_docker_host:
        extra_hosts["host.docker.internal"] = "host-gateway"

    return ContainerSpec(
        name=node.name,
        image=node.image,
        command=["start"],
        environment=environment,
        volumes={node.data_dir: {"bind": NODE_DATA_DIR, "mode": "rw"}},
        ports={
            f"{node.api_port}/tcp": (API_HOST_IP, int(node.api_port)),
            f"{node.p2p_port}/tcp": (P2P_HOST_IP, int(node.p2p_port)),
        },
        restart_policy={"Name": "unless-stopped"},
        user=user,
        extra_hosts=extra_hosts,
        labels={"ruche.node": str(node.id)},
    )


class ContainerRuntime(ABC):
    """Container operations addressed by container name."""

    @abstractmethod
    def create(self, spec: ContainerSpec) -> None: ...

    @abstractmethod
    def start(self, name: str) -> None: ...

    @abstractmethod
    def stop(self, name: str) -> None: ...

    @abstractmethod
    def remove(self, name: str) -> None:
        """Force-remove a container. Raises ContainerMissing if it does not exist."""

    @abstractmethod
    def logs(self, name: str) -> list[str]:
        """Combined stdout/stderr lines."""

    def available(self) -> bool:
        return True

    def close(self) -> None:
        """Release connections held by the runtime."""


class ContainerMissing(UpstreamFailure):
    def __init__(self, name: str):
        super().__init__("runtime", f"No such container: {name}")
        self.name = name


class DockerRuntime(ContainerRuntime):
    """ContainerRuntime backed by the local Docker daemon."""

    def __init__(self, client_factory: Callable[[], Any] = docker.from_env):
        self._client_factory = client_factory
        self._client_lock = Lock()
        self._docker: Any = None

    def _client(self) -> Any:
        # One client for the life of the runtime; a failed connect is retried on the next call.
        with self._client_lock:
            if self._docker is None:
                try:
                    self._docker = self._client_factory()
                except DockerException as e:
                    raise UpstreamFailure("runtime", f"Docker is not available: {e}") from e
            return self._docker

    def close(self) -> None:
        with self._client_lock:
            client, self._docker = self._docker, None
        if client is not None:
            client.close()

    def _get(self, name: str) -> Any:
        c = self._client()
        try:
            return c.containers.get(name)
        except NotFound as e:
            raise ContainerMissing(name) from e
        except DockerException as e:
            raise UpstreamFailure("runtime", str(e)) from e

    def available(self) -> bool:
        try:
            self._client().ping()
            return True
        except (DockerException, UpstreamFailure):
            return False

    def create(self, spec: ContainerSpec) -> None:
        c = self._client()
        try:
            c.images.pull(spec.image)
            c.containers.create(
                spec.image,
                command=spec.command,
                name=spec.name,
                environment=spec.environment,
                volumes=spec.volumes,
                ports=spec.ports,
                restart_policy=spec.restart_policy,
                user=spec.user,
                extra_hosts=spec.extra_hosts or None,
                labels=spec.labels,
            )
        except DockerException as e:
            raise UpstreamFailure("runtime", f"Unable to create container {spec.name}: {e}") from e
        logger.info("Created container %s from image %s", spec.name, spec.image)

    def start(self, name: str) -> None:
        cont = self._get(name)
        try:
            cont.start()
        except DockerException as e:
            raise UpstreamFailure("runtime", f"Unable to start container {name}: {e}") from e

    def stop(self, name: str) -> None:
        cont = self._get(name)
        try:
            cont.stop()
        except DockerException as e:
            raise UpstreamFailure("runtime", f"Unable to stop container {name}: {e}") from e

    def remove(self, name: str) -> None:
        cont = self._get(name)
        try:
            cont.remove(force=True)
        except NotFound as e:
            raise ContainerMissing(name) from e
        except DockerException as e:
            raise UpstreamFailure("runtime", f"Unable to remove container {name}: {e}") from e

    def logs(self, name: str) -> list[str]:
        cont = self._get(name)
        try:
            raw = cont.logs(stdout=True, stderr=True)
        except DockerException as e:
            raise UpstreamFailure("runtime", f"Unable to read logs of {name}: {e}") from e
        return raw.decode("utf-8", errors="replace").splitlines()


@dataclass
class FakeContainer:
    spec: ContainerSpec
    status: str = "created"  # created|running|exited
    log_lines: list[str] = field(default_factory=list)


class InMemoryRuntime(ContainerRuntime):
    """ContainerRuntime that only keeps track of container state in a dict."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.containers: dict[str, FakeContainer] = {}
        self.calls: list[tuple[str, str]] = []

    def _get(self, name: str) -> FakeContainer:
        cont = self.containers.get(name)
        if cont is None:
            raise ContainerMissing(name)
        return cont

    def create(self, spec: ContainerSpec) -> None:
        with self._lock:
            self.calls.append(("create", spec.name))
            if spec.name in self.containers:
                raise UpstreamFailure("runtime", f"Conflict. The container name {spec.name} is already in use.")
            self.containers[spec.name] = FakeContainer(spec=spec)

    def start(self, name: str) -> None:
        with self._lock:
            self.calls.append(("start", name))
            cont = self._get(name)
            cont.status = "running"
            cont.log_lines.append(f"{name} started")

    def stop(self, name: str) -> None:
        with self._lock:
            self.calls.append(("stop", name))
            cont = self._get(name)
            cont.status = "exited"
            cont.log_lines.append(f"{name} stopped")

    def remove(self, name: str) -> None:
        with self._lock:
            self.calls.append(("remove", name))
            self._get(name)
            del self.containers[name]

    def logs(self, name: str) -> list[str]:
        with self._lock:
            self.calls.append(("logs", name))
            return list(self._get(name).log_lines)
