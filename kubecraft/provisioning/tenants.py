"""Tenant onboarding and offboarding."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import AppConfig
from ..errors import ConflictError, KubecraftError, NotFoundError, QuotaExceededError
from ..events.models import AuditAction, AuditOutcome
from ..events.publisher import AuditEventPublisher
from ..substrate.client import SubstrateClient
from . import manifests
from .authorization import AuthorizationListMaintainer
from .validation import validate_tenant_name

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    tenant_name: str
    namespace: str
    token: str


class TenantProvisioner:
    """Create and tear down a tenant's namespace, identity, isolation policy and quota.

    Onboarding is not transactional. A failure after the namespace exists
    leaves the partial namespace in place, and a later ``register`` for the
    same name is rejected by the namespace-exists check.
    """

    def __init__(
        self,
        substrate: SubstrateClient,
        settings: AppConfig,
        authorization_list: AuthorizationListMaintainer,
        audit_publisher: Optional[AuditEventPublisher] = None,
    ) -> None:
        self._substrate = substrate
        self._settings = settings
        self._authorization_list = authorization_list
        self._audit_publisher = audit_publisher

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def count_tenants(self) -> int:
        return len(self._substrate.list_namespaces(self._settings.tenants.tenant_namespace_selector))

    def register(self, tenant_name: str) -> RegistrationResult:
        validate_tenant_name(tenant_name, self._settings.tenants)
        namespace = self._settings.tenants.namespace_for(tenant_name)
        try:
            self._check_admission(tenant_name, namespace)
            self._provision(tenant_name, namespace)
            token = self._substrate.create_token(namespace, tenant_name, self._settings.token.expiry_seconds)
        except KubecraftError as exc:
            LOGGER.error(
                "Tenant registration failed",
                extra={"tenant": tenant_name, "namespace": namespace, "error": exc.message},
            )
            self._audit(tenant_name, AuditAction.TENANT_REGISTER, AuditOutcome.FAILURE, error=exc.message)
            raise
        LOGGER.info("Tenant registered", extra={"tenant": tenant_name, "namespace": namespace})
        self._audit(tenant_name, AuditAction.TENANT_REGISTER, AuditOutcome.SUCCESS, namespace=namespace)
        return RegistrationResult(tenant_name=tenant_name, namespace=namespace, token=token)

    def deregister(self, tenant_name: str) -> None:
        """Delete the namespace and drop the identity from the Authorization List; idempotent."""

        validate_tenant_name(tenant_name, self._settings.tenants)
        namespace = self._settings.tenants.namespace_for(tenant_name)
        try:
            try:
                self._substrate.delete_namespace(namespace)
                namespace_deleted = True
            except NotFoundError:
                LOGGER.info("Namespace already absent", extra={"tenant": tenant_name, "namespace": namespace})
                namespace_deleted = False
            list_changed = self._authorization_list.remove(tenant_name)
        except KubecraftError as exc:
            LOGGER.error(
                "Tenant deregistration failed",
                extra={"tenant": tenant_name, "namespace": namespace, "error": exc.message},
            )
            self._audit(tenant_name, AuditAction.TENANT_DEREGISTER, AuditOutcome.FAILURE, error=exc.message)
            raise
        if not list_changed:
            LOGGER.warning(
                "Tenant not found in authorization list (already removed or never added)",
                extra={"tenant": tenant_name},
            )
        self._audit(
            tenant_name,
            AuditAction.TENANT_DEREGISTER,
            AuditOutcome.SUCCESS,
            namespaceDeleted=namespace_deleted,
            authorizationListChanged=list_changed,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _check_admission(self, tenant_name: str, namespace: str) -> None:
        count = self.count_tenants()
        ceiling = self._settings.tenants.max_tenants
        if count >= ceiling:
            raise QuotaExceededError(f"max tenant limit reached ({count}/{ceiling})")
        if self._substrate.namespace_exists(namespace):
            raise ConflictError(f"tenant name {tenant_name} is already registered")

    def _provision(self, tenant_name: str, namespace: str) -> None:
        settings = self._settings
        LOGGER.info("Provisioning tenant", extra={"tenant": tenant_name, "namespace": namespace})
        try:
            self._substrate.create_namespace(manifests.build_namespace(settings, tenant_name))
        except ConflictError as exc:
            raise ConflictError(f"tenant name {tenant_name} is already registered") from exc
        self._substrate.create_service_account(namespace, manifests.build_service_account(settings, tenant_name))
        self._substrate.create_role(namespace, manifests.build_tenant_role(settings, tenant_name))
        self._substrate.create_role_binding(namespace, manifests.build_tenant_role_binding(settings, tenant_name))
        self._substrate.create_resource_quota(namespace, manifests.build_resource_quota(settings, tenant_name))
        self._authorization_list.add(tenant_name)

    def _audit(self, tenant_name: str, action: AuditAction, outcome: AuditOutcome, **details) -> None:
        if self._audit_publisher is not None:
            self._audit_publisher.publish(tenant_name, action, outcome, details)


__all__ = ["TenantProvisioner", "RegistrationResult"]
