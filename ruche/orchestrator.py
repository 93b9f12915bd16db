from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, Iterable

from .allocator import allocate_id
from .db import Registry
from .docker_ops import ContainerMissing, ContainerRuntime, build_container_spec
from .errors import CapacityExceeded, IdUnavailable, NodeNotFound, RucheError, UpstreamFailure
from .models import MAX_NODES, NodeInfo, NodeRecord, OperationResult
from .resources import ResourceResolver, remove_node_dir
from .runtime import DeletionGuard
from .settings import Settings

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"INFO": logging.INFO, "WARN": logging.WARNING, "ERROR": logging.ERROR}


class LifecycleOrchestrator:
    """Drives nodes through provision, start/stop, recreate and confirmed deletion.

    Provisioning runs as one exclusive section (capacity check, id allocation,
    directory, container, registry write) so two concurrent requests can never
    pick the same id. Nothing is retried and nothing is rolled back: a failure
    leaves whatever was already created in place.
    """

    def __init__(
        self,
        settings: Settings,
        registry: Registry,
        runtime: ContainerRuntime,
        neighborhood_lookup: Callable[[], str],
        guard: DeletionGuard | None = None,
    ):
        self.settings = settings
        self.registry = registry
        self.runtime = runtime
        self.neighborhood_lookup = neighborhood_lookup
        self.guard = guard or DeletionGuard()
        self.resolver = ResourceResolver(settings)
        self._provision_lock = Lock()

    # ---- queries ----

    def ensure_capacity(self) -> None:
        count = self.registry.count()
        if count >= MAX_NODES:
            raise CapacityExceeded(f"Max capacity reached. {count} nodes already registered.")

    def get_record(self, node_id: int) -> NodeRecord:
        record = self.registry.get(node_id)
        if record is None:
            raise NodeNotFound(f"Unable to find node with id {node_id}.")
        return record

    def node_info(self, record: NodeRecord) -> NodeInfo:
        return NodeInfo(
            id=record.id,
            name=record.name,
            image=self.settings.node_image,
            neighborhood=record.neighborhood,
            full_node=record.full_node,
            swap_enable=record.swap_enable,
            reserve_doubling=record.reserve_doubling,
            data_dir=record.data_dir,
            api_port=self.resolver.api_port(record.id),
            p2p_port=self.resolver.p2p_port(record.id),
        )

    def get_node(self, node_id: int) -> NodeInfo:
        return self.node_info(self.get_record(node_id))

    def list_nodes(self) -> list[NodeInfo]:
        return [self.node_info(r) for r in self.registry.list()]

    def logs(self, node_id: int) -> list[str]:
        return self.runtime.logs(self.get_record(node_id).name)

    # ---- provisioning ----

    def provision(self) -> NodeInfo:
        """Create, start and register a new node; returns its info.

        Order: directory, container, registry record. Only a node whose
        container was created and started is ever recorded.
        """
        with self._provision_lock:
            self.ensure_capacity()
            node_id = allocate_id(self.registry.ids())
            if self.registry.get(node_id) is not None:
                raise IdUnavailable(f"Node id {node_id} is already registered.")

            neighborhood = self.neighborhood_lookup()

            # Resolve ports before touching the disk so a bad template leaves nothing behind.
            self.resolver.api_port(node_id)
            self.resolver.p2p_port(node_id)

            data_dir = self.resolver.create_node_dir(node_id)
            record = NodeRecord(
                id=node_id,
                neighborhood=neighborhood,
                full_node=self.settings.full_node,
                swap_enable=self.settings.swap_enable,
                reserve_doubling=self.settings.reserve_doubling,
                data_dir=data_dir,
            )
            info = self.node_info(record)
            try:
                self._create_and_start(info)
            except RucheError as e:
                self._event("ERROR", f"Provisioning of {info.name} failed after creating {data_dir}: {e}", node_id)
                raise

            self.registry.add(record)

        self._event("INFO", f"Created {info.name} in neighborhood {neighborhood} ({data_dir})", node_id)
        return info

    def _create_and_start(self, info: NodeInfo) -> None:
        self.runtime.create(build_container_spec(info, self.settings))
        self.runtime.start(info.name)

    # ---- container lifecycle ----

    def start_node(self, node_id: int) -> None:
        name = self.get_record(node_id).name
        self.runtime.start(name)
        self._event("INFO", f"Started {name}", node_id)

    def stop_node(self, node_id: int) -> None:
        name = self.get_record(node_id).name
        self.runtime.stop(name)
        self._event("INFO", f"Stopped {name}", node_id)

    def recreate_node(self, node_id: int) -> NodeInfo:
        """Replace a node's container, keeping its id, ports and directory.

        Used to roll out image or configuration changes. Failures to stop or
        remove the old container are ignored.
        """
        info = self.get_node(node_id)
        self._recreate(info)
        return info

    def _recreate(self, info: NodeInfo) -> None:
        try:
            self.runtime.stop(info.name)
        except UpstreamFailure as e:
            logger.debug("Ignoring stop failure for %s: %s", info.name, e)
        try:
            self.runtime.remove(info.name)
        except UpstreamFailure as e:
            logger.debug("Ignoring remove failure for %s: %s", info.name, e)
        self._create_and_start(info)
        self._event("INFO", f"Recreated {info.name} from image {info.image}", info.id)

    def start_containers(self, names: Iterable[str]) -> list[OperationResult]:
        return self._each(names, self.runtime.start)

    def stop_containers(self, names: Iterable[str]) -> list[OperationResult]:
        return self._each(names, self.runtime.stop)

    def start_all(self) -> list[OperationResult]:
        return self.start_containers(r.name for r in self.registry.list())

    def stop_all(self) -> list[OperationResult]:
        return self.stop_containers(r.name for r in self.registry.list())

    def recreate_all(self) -> list[OperationResult]:
        results: list[OperationResult] = []
        for record in self.registry.list():
            try:
                self._recreate(self.node_info(record))
                results.append(OperationResult(name=record.name, ok=True))
            except RucheError as e:
                results.append(OperationResult(name=record.name, ok=False, error=str(e)))
        return results

    def _each(self, names: Iterable[str], op: Callable[[str], None]) -> list[OperationResult]:
        # No atomicity across the batch: every name gets its own attempt and result.
        results: list[OperationResult] = []
        for name in names:
            try:
                op(name)
                results.append(OperationResult(name=name, ok=True))
            except RucheError as e:
                logger.warning("%s failed for %s: %s", getattr(op, "__name__", "operation"), name, e)
                results.append(OperationResult(name=name, ok=False, error=str(e)))
        return results

    # ---- deletion ----

    def request_deletion(self, node_id: int) -> None:
        record = self.get_record(node_id)
        self.guard.request_deletion(node_id)
        self._event("WARN", f"Deletion of {record.name} requested", node_id)

    def confirm_deletion(self, node_id: int) -> None:
        self.get_record(node_id)
        self.guard.confirm_and_delete(node_id, self.delete_node)

    def delete_node(self, node_id: int) -> None:
        """Remove the container, the data directory tree and the record.

        Call through confirm_deletion; this step does not check for a
        pending request itself.
        """
        record = self.get_record(node_id)
        try:
            self.runtime.remove(record.name)
        except ContainerMissing:
            logger.warning("Container %s was already gone", record.name)
        remove_node_dir(record.data_dir)
        self.registry.delete(node_id)
        self._event("WARN", f"Deleted {record.name} and {record.data_dir}", node_id)

    def _event(self, level: str, message: str, node_id: int | None = None) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        try:
            self.registry.log_event(level, message, node_id=node_id)
        except UpstreamFailure as e:
            logger.error("Unable to record event %r: %s", message, e)
