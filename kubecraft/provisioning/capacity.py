"""Advisory memory admission control for new workloads."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from kubernetes.utils import parse_quantity

from ..config import AppConfig
from ..errors import InsufficientCapacityError
from ..substrate.client import SubstrateClient

LOGGER = logging.getLogger(__name__)

MIB = Decimal(1024 * 1024)


@dataclass(frozen=True)
class CapacityReport:
    """Memory figures in bytes at the time of the check."""

    total: Decimal
    requested: Decimal
    threshold: Decimal
    running_workloads: int

    @property
    def remaining(self) -> Decimal:
        return self.total - self.requested

    @property
    def admissible(self) -> bool:
        return self.remaining >= self.threshold

    def as_dict(self) -> dict:
        return {
            "totalMiB": int(self.total / MIB),
            "requestedMiB": int(self.requested / MIB),
            "remainingMiB": int(self.remaining / MIB),
            "thresholdMiB": int(self.threshold / MIB),
            "runningWorkloads": self.running_workloads,
            "admissible": self.admissible,
        }


class CapacityAdmissionController:
    """Sum memory requests of running workload pods and compare against the cluster budget.

    Nothing is reserved: two checks racing each other can both pass.
    """

    def __init__(self, substrate: SubstrateClient, settings: AppConfig) -> None:
        self._substrate = substrate
        self._settings = settings

    def report(self) -> CapacityReport:
        policy = self._settings.tenants
        selector = f"{policy.common_label_key}={self._settings.workload.pod_label_value}"
        pods = self._substrate.list_pods_all_namespaces(selector, field_selector="status.phase=Running")
        requested = Decimal(0)
        for pod in pods:
            for container in (pod.spec.containers if pod.spec else None) or []:
                requests = (container.resources.requests if container.resources else None) or {}
                if "memory" in requests:
                    requested += parse_quantity(requests["memory"])
        return CapacityReport(
            total=parse_quantity(self._settings.capacity.total_available_memory),
            requested=requested,
            threshold=parse_quantity(self._settings.workload.memory_limit),
            running_workloads=len(pods),
        )

    def admit(self) -> CapacityReport:
        report = self.report()
        LOGGER.info("Capacity check", extra=report.as_dict())
        if not report.admissible:
            raise InsufficientCapacityError("not enough memory available to allocate to a new workload")
        return report


__all__ = ["CapacityAdmissionController", "CapacityReport"]
