"""Node port allocation for workload endpoints."""
from __future__ import annotations

import logging
from typing import Set

from ..config import AppConfig
from ..errors import ExhaustedError
from ..substrate.client import SubstrateClient

LOGGER = logging.getLogger(__name__)


class PortAllocator:
    """Pick the lowest node port in the configured range not used by any tenant endpoint.

    The scan is not atomic with the endpoint creation that follows it; the API
    server rejecting a duplicate node port is the only backstop.
    """

    def __init__(self, substrate: SubstrateClient, settings: AppConfig) -> None:
        self._substrate = substrate
        self._settings = settings

    def occupied_ports(self) -> Set[int]:
        services = self._substrate.list_services_all_namespaces(self._settings.tenants.common_label_selector)
        occupied: Set[int] = set()
        for service in services:
            for port in (service.spec.ports if service.spec else None) or []:
                if port.node_port:
                    occupied.add(port.node_port)
        return occupied

    def allocate(self) -> int:
        port_range = self._settings.ports
        occupied = self.occupied_ports()
        for port in range(port_range.min_port, port_range.max_port + 1):
            if port not in occupied:
                LOGGER.debug("Allocated node port", extra={"port": port, "occupied": sorted(occupied)})
                return port
        raise ExhaustedError(
            f"no available ports found in range {port_range.min_port}-{port_range.max_port}"
        )


__all__ = ["PortAllocator"]
