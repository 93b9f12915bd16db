from __future__ import annotations

from .db import InMemoryRegistry, Registry, SqliteRegistry
from .docker_ops import ContainerRuntime, DockerRuntime, InMemoryRuntime
from .neighborhood import NeighborhoodLookup
from .orchestrator import LifecycleOrchestrator
from .runtime import DeletionGuard
from .settings import Settings


def get_registry(settings: Settings) -> Registry:
    backend = settings.registry_backend.lower()
    if backend == "memory":
        return InMemoryRegistry()
    if backend == "sqlite":
        return SqliteRegistry(settings.db_path)
    raise ValueError(f"Unknown registry backend '{settings.registry_backend}' (expected sqlite|memory)")


def get_container_runtime(settings: Settings) -> ContainerRuntime:
    backend = settings.container_backend.lower()
    if backend == "memory":
        return InMemoryRuntime()
    if backend == "docker":
        return DockerRuntime()
    raise ValueError(f"Unknown container backend '{settings.container_backend}' (expected docker|memory)")


def build_orchestrator(settings: Settings) -> LifecycleOrchestrator:
    """Assemble the process-wide orchestrator from settings.

    Built once at startup and shared by every request.
    """
    return LifecycleOrchestrator(
        settings=settings,
        registry=get_registry(settings),
        runtime=get_container_runtime(settings),
        neighborhood_lookup=NeighborhoodLookup(settings.neighborhood_api_url, settings.neighborhood_timeout_s),
        guard=DeletionGuard(),
    )
