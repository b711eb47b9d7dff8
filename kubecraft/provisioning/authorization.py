"""Maintenance of the shared Authorization List.

The list is a single ClusterRoleBinding whose subjects are the tenant
service accounts allowed to run cluster-wide capacity queries. It is the one
piece of cluster-scoped state every onboarding and offboarding mutates, so
every write carries the ``resourceVersion`` it was read at and a stale write
is retried from a fresh read instead of silently overwriting another
tenant's entry.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from kubernetes import client

from ..config import AppConfig
from ..errors import ConflictError, NotFoundError
from ..services.locks import LocalListLock
from ..substrate.client import SubstrateClient
from .manifests import identity_subject

LOGGER = logging.getLogger(__name__)


def _matches(subject: client.RbacV1Subject, identity: str, namespace: str) -> bool:
    return subject.kind == "ServiceAccount" and subject.name == identity and subject.namespace == namespace


class AuthorizationListMaintainer:
    """Append and filter tenant identities on the Authorization List."""

    def __init__(self, substrate: SubstrateClient, settings: AppConfig, lock=None) -> None:
        self._substrate = substrate
        self._settings = settings
        self._lock = lock or LocalListLock()
        self._binding_name = settings.rbac.authorization_list
        self._attempts = settings.kubernetes.authorization_list_update_attempts

    def _read(self) -> client.V1ClusterRoleBinding:
        try:
            return self._substrate.read_cluster_role_binding(self._binding_name)
        except NotFoundError as exc:
            raise NotFoundError(f"could not find ClusterRoleBinding {self._binding_name}") from exc

    def entries(self) -> List[client.RbacV1Subject]:
        return list(self._read().subjects or [])

    def contains(self, tenant_name: str) -> bool:
        namespace = self._settings.tenants.namespace_for(tenant_name)
        return any(_matches(subject, tenant_name, namespace) for subject in self.entries())

    def add(self, tenant_name: str) -> None:
        """Append the tenant identity; an identity already present is a ``ConflictError``."""

        namespace = self._settings.tenants.namespace_for(tenant_name)

        def mutate(subjects: List[client.RbacV1Subject]) -> Optional[List[client.RbacV1Subject]]:
            if any(_matches(subject, tenant_name, namespace) for subject in subjects):
                raise ConflictError(f"{tenant_name} already exists in ClusterRoleBinding {self._binding_name}")
            return subjects + [identity_subject(self._settings, tenant_name)]

        self._update(tenant_name, "add", mutate)

    def remove(self, tenant_name: str) -> bool:
        """Filter out the tenant identity. Returns ``False`` when it was not present."""

        namespace = self._settings.tenants.namespace_for(tenant_name)

        def mutate(subjects: List[client.RbacV1Subject]) -> Optional[List[client.RbacV1Subject]]:
            filtered = [subject for subject in subjects if not _matches(subject, tenant_name, namespace)]
            if len(filtered) == len(subjects):
                return None
            return filtered

        return self._update(tenant_name, "remove", mutate)

    def _update(
        self,
        tenant_name: str,
        operation: str,
        mutate: Callable[[List[client.RbacV1Subject]], Optional[List[client.RbacV1Subject]]],
    ) -> bool:
        with self._lock.hold():
            for attempt in range(1, self._attempts + 1):
                binding = self._read()
                subjects = mutate(list(binding.subjects or []))
                if subjects is None:
                    LOGGER.info(
                        "Authorization list unchanged",
                        extra={"tenant": tenant_name, "operation": operation},
                    )
                    return False
                binding.subjects = subjects
                try:
                    self._substrate.replace_cluster_role_binding(self._binding_name, binding)
                except ConflictError:
                    LOGGER.warning(
                        "Authorization list changed concurrently; retrying from a fresh read",
                        extra={"tenant": tenant_name, "operation": operation, "attempt": attempt},
                    )
                    continue
                LOGGER.info(
                    "Authorization list updated",
                    extra={"tenant": tenant_name, "operation": operation, "entries": len(subjects)},
                )
                return True
        raise ConflictError(
            f"ClusterRoleBinding {self._binding_name} kept changing concurrently; "
            f"could not {operation} {tenant_name} after {self._attempts} attempts"
        )


__all__ = ["AuthorizationListMaintainer"]
