"""Lifecycle of the single stateful workload a tenant may run."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..config import AppConfig
from ..errors import ConflictError, KubecraftError, NotFoundError, ReadinessTimeoutError, SubstrateError
from ..events.models import AuditAction, AuditOutcome
from ..events.publisher import AuditEventPublisher
from ..substrate.client import SubstrateClient
from . import manifests
from .capacity import CapacityAdmissionController, CapacityReport
from .ports import PortAllocator
from .validation import validate_workload_name

LOGGER = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_STOPPED = "stopped"


@dataclass(frozen=True)
class WorkloadInfo:
    """Listing entry; ``status`` reflects desired replicas, not instance health."""

    name: str
    status: str
    node_port: Optional[int]
    created_at: Optional[datetime]


class WorkloadLifecycleManager:
    """Create, start, stop, delete and list workloads in one tenant namespace."""

    def __init__(
        self,
        substrate: SubstrateClient,
        settings: AppConfig,
        capacity: Optional[CapacityAdmissionController] = None,
        ports: Optional[PortAllocator] = None,
        audit_publisher: Optional[AuditEventPublisher] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._substrate = substrate
        self._settings = settings
        self._capacity = capacity or CapacityAdmissionController(substrate, settings)
        self._ports = ports or PortAllocator(substrate, settings)
        self._audit_publisher = audit_publisher
        self._sleep = sleep

    def _namespace(self, tenant_name: str) -> str:
        return self._settings.tenants.namespace_for(tenant_name)

    def _require(self, tenant_name: str, workload_name: str) -> str:
        validate_workload_name(workload_name, self._settings.tenants)
        namespace = self._namespace(tenant_name)
        if not self._substrate.stateful_set_exists(namespace, workload_name):
            raise NotFoundError(f"workload {workload_name} does not exist")
        return namespace

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create(self, tenant_name: str, workload_name: str) -> int:
        """Admit, allocate a port, create endpoint then workload, and wait for readiness.

        Returns the external port. On a readiness timeout the objects stay in place.
        """

        validate_workload_name(workload_name, self._settings.tenants)
        namespace = self._namespace(tenant_name)
        with self._audited(tenant_name, AuditAction.WORKLOAD_CREATE, workload_name) as details:
            if self._substrate.stateful_set_exists(namespace, workload_name):
                raise ConflictError(f"workload {workload_name} already exists")
            self._capacity.admit()
            port = self._ports.allocate()
            details["port"] = port
            try:
                self._substrate.create_service(
                    namespace, manifests.build_service(self._settings, tenant_name, workload_name, port)
                )
            except ConflictError as exc:
                raise ConflictError(
                    f"could not claim port {port} for workload {workload_name}: {exc.message}"
                ) from exc
            try:
                self._substrate.create_stateful_set(
                    namespace, manifests.build_stateful_set(self._settings, tenant_name, workload_name)
                )
            except KubecraftError:
                self._remove_orphaned_service(namespace, workload_name)
                raise
            LOGGER.info(
                "Workload created; waiting for readiness",
                extra={"tenant": tenant_name, "workload": workload_name, "port": port},
            )
            self.wait_for_ready(tenant_name, workload_name)
        return port

    def start(self, tenant_name: str, workload_name: str) -> int:
        """Scale to one replica, wait for readiness and return the external port."""

        with self._audited(tenant_name, AuditAction.WORKLOAD_START, workload_name) as details:
            namespace = self._require(tenant_name, workload_name)
            self._substrate.scale_stateful_set(namespace, workload_name, 1)
            self.wait_for_ready(tenant_name, workload_name)
            port = self.get_port(tenant_name, workload_name)
            details["port"] = port
        return port

    def stop(self, tenant_name: str, workload_name: str) -> None:
        with self._audited(tenant_name, AuditAction.WORKLOAD_STOP, workload_name):
            namespace = self._require(tenant_name, workload_name)
            self._substrate.scale_stateful_set(namespace, workload_name, 0)
        LOGGER.info("Workload stopped", extra={"tenant": tenant_name, "workload": workload_name})

    def delete(self, tenant_name: str, workload_name: str) -> None:
        """Delete statefulset, endpoint and storage claim, attempting all three.

        Every sub-resource that fails to delete is reported in the raised
        ``SubstrateError.failures``; a sub-resource already gone is not a failure.
        """

        with self._audited(tenant_name, AuditAction.WORKLOAD_DELETE, workload_name):
            namespace = self._require(tenant_name, workload_name)
            steps = (
                ("statefulset", lambda: self._substrate.delete_stateful_set(namespace, workload_name)),
                ("service", lambda: self._substrate.delete_service(namespace, workload_name)),
                (
                    "persistentvolumeclaim",
                    lambda: self._substrate.delete_persistent_volume_claim(
                        namespace, manifests.claim_name(self._settings, workload_name)
                    ),
                ),
            )
            failures: Dict[str, KubecraftError] = {}
            for resource, delete in steps:
                try:
                    delete()
                except NotFoundError:
                    LOGGER.warning(
                        "Workload sub-resource already absent",
                        extra={"tenant": tenant_name, "workload": workload_name, "resource": resource},
                    )
                except KubecraftError as exc:
                    LOGGER.error(
                        "Failed to delete workload sub-resource",
                        extra={"tenant": tenant_name, "workload": workload_name, "resource": resource},
                    )
                    failures[resource] = exc
            if failures:
                summary = "; ".join(f"{resource}: {exc.message}" for resource, exc in failures.items())
                raise SubstrateError(
                    f"failed to delete workload {workload_name} ({summary})", failures=failures
                )
        LOGGER.info("Workload deleted", extra={"tenant": tenant_name, "workload": workload_name})

    def list(self, tenant_name: str) -> List[WorkloadInfo]:
        namespace = self._namespace(tenant_name)
        workloads: List[WorkloadInfo] = []
        for stateful_set in self._substrate.list_stateful_sets(namespace):
            name = stateful_set.metadata.name
            replicas = stateful_set.spec.replicas if stateful_set.spec else None
            status = STATUS_STOPPED if replicas == 0 else STATUS_RUNNING
            try:
                port = self.get_port(tenant_name, name)
            except NotFoundError:
                LOGGER.warning("Workload has no endpoint", extra={"tenant": tenant_name, "workload": name})
                port = None
            workloads.append(
                WorkloadInfo(
                    name=name,
                    status=status,
                    node_port=port,
                    created_at=stateful_set.metadata.creation_timestamp,
                )
            )
        return workloads

    def capacity_report(self) -> CapacityReport:
        return self._capacity.report()

    def get_port(self, tenant_name: str, workload_name: str) -> Optional[int]:
        service = self._substrate.read_service(self._namespace(tenant_name), workload_name)
        ports = (service.spec.ports if service.spec else None) or []
        return ports[0].node_port if ports else None

    def wait_for_ready(self, tenant_name: str, workload_name: str) -> None:
        """Poll the single instance for a Ready condition, at most ``max_attempts`` times."""

        readiness = self._settings.readiness
        namespace = self._namespace(tenant_name)
        pod_name = manifests.pod_name(workload_name)
        for attempt in range(1, readiness.max_attempts + 1):
            try:
                pod = self._substrate.read_pod(namespace, pod_name)
            except NotFoundError:
                pod = None
            if pod is not None and _pod_ready(pod):
                LOGGER.info(
                    "Workload ready",
                    extra={"tenant": tenant_name, "workload": workload_name, "attempt": attempt},
                )
                return
            if attempt < readiness.max_attempts:
                self._sleep(readiness.poll_interval_seconds)
        raise ReadinessTimeoutError(f"timed out waiting for workload {workload_name} to become ready")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _remove_orphaned_service(self, namespace: str, workload_name: str) -> None:
        try:
            self._substrate.delete_service(namespace, workload_name)
        except KubecraftError:
            LOGGER.exception(
                "Failed to remove endpoint after statefulset creation failed",
                extra={"namespace": namespace, "workload": workload_name},
            )

    def _audited(self, tenant_name: str, action: AuditAction, workload_name: str) -> "_AuditScope":
        return _AuditScope(self._audit_publisher, tenant_name, action, workload_name)


def _pod_ready(pod) -> bool:
    conditions = (pod.status.conditions if pod.status else None) or []
    return any(condition.type == "Ready" and condition.status == "True" for condition in conditions)


class _AuditScope:
    """Context manager publishing one audit event for the wrapped operation."""

    def __init__(
        self,
        publisher: Optional[AuditEventPublisher],
        tenant_name: str,
        action: AuditAction,
        workload_name: str,
    ) -> None:
        self._publisher = publisher
        self._tenant_name = tenant_name
        self._action = action
        self.details: Dict[str, object] = {"workload": workload_name}

    def __enter__(self) -> Dict[str, object]:
        return self.details

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._publisher is not None:
            if exc is None:
                self._publisher.publish(self._tenant_name, self._action, AuditOutcome.SUCCESS, self.details)
            else:
                failure = dict(self.details, error=str(exc))
                self._publisher.publish(self._tenant_name, self._action, AuditOutcome.FAILURE, failure)
        return False


__all__ = ["WorkloadLifecycleManager", "WorkloadInfo", "STATUS_RUNNING", "STATUS_STOPPED"]
