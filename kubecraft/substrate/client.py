"""Thin typed handle around the Kubernetes API used by every provisioning component."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError as TransportError

from ..config import AppConfig, KubernetesConfig
from ..errors import (
    ConflictError,
    ForbiddenError,
    KubecraftError,
    NotFoundError,
    SubstrateError,
    UnauthorizedError,
)

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 503, 504})
# Rejections issued before anything is committed; the only failures a create
# or replace is retried on.
UNCOMMITTED_STATUSES = frozenset({429, 503})


def _api_message(exc: ApiException) -> str:
    body = getattr(exc, "body", None)
    if body:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            return str(body)
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
    return exc.reason or "unknown error"


def translate_api_exception(exc: ApiException, action: str, *, tenant_scoped: bool = False) -> KubecraftError:
    """Map a Kubernetes API failure onto the provisioning error taxonomy.

    401 and 403 become caller errors only for requests carrying a tenant token;
    for the service identity they stay ``SubstrateError``.
    """

    message = _api_message(exc)
    if tenant_scoped and exc.status == 401:
        return UnauthorizedError(f"{action}: {message}")
    if tenant_scoped and exc.status == 403:
        return ForbiddenError(f"{action}: {message}")
    if exc.status == 404:
        return NotFoundError(f"{action}: {message}")
    if exc.status == 409:
        return ConflictError(f"{action}: {message}")
    if exc.status == 422 and "already allocated" in message:
        return ConflictError(f"{action}: {message}")
    return SubstrateError(f"{action}: {message}", status=exc.status)


class SubstrateClient:
    """Kubernetes API access scoped by whichever identity built the underlying client."""

    def __init__(
        self,
        api_client: client.ApiClient,
        settings: KubernetesConfig,
        *,
        identity: str = "cluster",
        tenant_scoped: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._apps = client.AppsV1Api(api_client)
        self._rbac = client.RbacAuthorizationV1Api(api_client)
        self._timeout = settings.request_timeout_seconds
        self._max_retries = settings.max_retries
        self._backoff = settings.retry_backoff_seconds
        self._sleep = sleep
        self.identity = identity
        self._tenant_scoped = tenant_scoped

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def for_service(cls, settings: AppConfig) -> "SubstrateClient":
        """Build a client for the registration service, in-cluster first then kubeconfig."""

        k8s = settings.kubernetes
        configuration = client.Configuration()
        if k8s.in_cluster:
            try:
                config.load_incluster_config(client_configuration=configuration)
                LOGGER.info("Using in-cluster Kubernetes configuration")
                return cls(client.ApiClient(configuration), k8s, identity="in-cluster")
            except ConfigException:
                LOGGER.info("In-cluster configuration unavailable; falling back to kubeconfig")
        try:
            config.load_kube_config(
                config_file=k8s.kubeconfig,
                context=k8s.context,
                client_configuration=configuration,
            )
        except (ConfigException, OSError) as exc:
            raise SubstrateError(f"failed to load Kubernetes configuration: {exc}") from exc
        LOGGER.info("Using kubeconfig", extra={"kubeconfig": k8s.kubeconfig, "context": k8s.context})
        return cls(client.ApiClient(configuration), k8s, identity="kubeconfig")

    @classmethod
    def for_tenant(cls, settings: AppConfig, tenant_name: str, token: str) -> "SubstrateClient":
        """Build a client authenticated with a tenant's bearer token."""

        k8s = settings.kubernetes
        configuration = client.Configuration()
        configuration.host = f"https://{k8s.cluster_endpoint}"
        configuration.api_key = {"authorization": token}
        configuration.api_key_prefix = {"authorization": "Bearer"}
        configuration.verify_ssl = k8s.verify_ssl
        if k8s.ca_cert:
            configuration.ssl_ca_cert = k8s.ca_cert
        return cls(client.ApiClient(configuration), k8s, identity=f"tenant:{tenant_name}", tenant_scoped=True)

    def close(self) -> None:
        self._api_client.close()

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------
    def _call(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self._invoke(action, func, args, kwargs, idempotent=True)

    def _write(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a create or replace, retrying only failures known to have committed nothing."""

        return self._invoke(action, func, args, kwargs, idempotent=False)

    def _invoke(
        self,
        action: str,
        func: Callable[..., Any],
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        *,
        idempotent: bool,
    ) -> Any:
        kwargs.setdefault("_request_timeout", self._timeout)
        retryable = RETRYABLE_STATUSES if idempotent else UNCOMMITTED_STATUSES
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except ApiException as exc:
                if exc.status in retryable and attempt < self._max_retries:
                    attempt += 1
                    LOGGER.warning(
                        "Transient Kubernetes API failure; retrying",
                        extra={"action": action, "status": exc.status, "attempt": attempt},
                    )
                    self._sleep(self._backoff * attempt)
                    continue
                raise translate_api_exception(exc, action, tenant_scoped=self._tenant_scoped) from exc
            except TransportError as exc:
                if idempotent and attempt < self._max_retries:
                    attempt += 1
                    LOGGER.warning(
                        "Kubernetes API unreachable; retrying",
                        extra={"action": action, "attempt": attempt, "error": str(exc)},
                    )
                    self._sleep(self._backoff * attempt)
                    continue
                raise SubstrateError(f"{action}: {exc}") from exc

    def _exists(self, action: str, func: Callable[..., Any], *args: Any) -> bool:
        try:
            self._call(action, func, *args)
        except NotFoundError:
            return False
        return True

    # ------------------------------------------------------------------
    # Namespaces and identities
    # ------------------------------------------------------------------
    def create_namespace(self, body: client.V1Namespace) -> client.V1Namespace:
        return self._write("create namespace", self._core.create_namespace, body)

    def namespace_exists(self, name: str) -> bool:
        return self._exists("get namespace", self._core.read_namespace, name)

    def list_namespaces(self, label_selector: str) -> List[client.V1Namespace]:
        result = self._call("list namespaces", self._core.list_namespace, label_selector=label_selector)
        return list(result.items or [])

    def delete_namespace(self, name: str) -> None:
        self._call("delete namespace", self._core.delete_namespace, name)

    def create_service_account(self, namespace: str, body: client.V1ServiceAccount) -> client.V1ServiceAccount:
        return self._write(
            "create service account", self._core.create_namespaced_service_account, namespace, body
        )

    def create_token(self, namespace: str, service_account: str, expiry_seconds: int) -> str:
        body = client.AuthenticationV1TokenRequest(
            spec=client.V1TokenRequestSpec(audiences=[], expiration_seconds=expiry_seconds)
        )
        result = self._call(
            "create token",
            self._core.create_namespaced_service_account_token,
            service_account,
            namespace,
            body,
        )
        return result.status.token

    def create_role(self, namespace: str, body: client.V1Role) -> client.V1Role:
        return self._write("create role", self._rbac.create_namespaced_role, namespace, body)

    def create_role_binding(self, namespace: str, body: client.V1RoleBinding) -> client.V1RoleBinding:
        return self._write("create role binding", self._rbac.create_namespaced_role_binding, namespace, body)

    def create_resource_quota(self, namespace: str, body: client.V1ResourceQuota) -> client.V1ResourceQuota:
        return self._write(
            "create resource quota", self._core.create_namespaced_resource_quota, namespace, body
        )

    # ------------------------------------------------------------------
    # Authorization List
    # ------------------------------------------------------------------
    def read_cluster_role_binding(self, name: str) -> client.V1ClusterRoleBinding:
        return self._call("get cluster role binding", self._rbac.read_cluster_role_binding, name)

    def replace_cluster_role_binding(
        self, name: str, body: client.V1ClusterRoleBinding
    ) -> client.V1ClusterRoleBinding:
        """Write the binding back; a stale ``resourceVersion`` surfaces as ``ConflictError``."""

        return self._write("update cluster role binding", self._rbac.replace_cluster_role_binding, name, body)

    # ------------------------------------------------------------------
    # Cluster-wide reads
    # ------------------------------------------------------------------
    def list_services_all_namespaces(self, label_selector: str) -> List[client.V1Service]:
        result = self._call(
            "list services", self._core.list_service_for_all_namespaces, label_selector=label_selector
        )
        return list(result.items or [])

    def list_pods_all_namespaces(self, label_selector: str, field_selector: Optional[str] = None) -> List[client.V1Pod]:
        kwargs: Dict[str, Any] = {"label_selector": label_selector}
        if field_selector:
            kwargs["field_selector"] = field_selector
        result = self._call("list pods", self._core.list_pod_for_all_namespaces, **kwargs)
        return list(result.items or [])

    # ------------------------------------------------------------------
    # Workload objects
    # ------------------------------------------------------------------
    def create_service(self, namespace: str, body: client.V1Service) -> client.V1Service:
        return self._write("create service", self._core.create_namespaced_service, namespace, body)

    def read_service(self, namespace: str, name: str) -> client.V1Service:
        return self._call("get service", self._core.read_namespaced_service, name, namespace)

    def delete_service(self, namespace: str, name: str) -> None:
        self._call("delete service", self._core.delete_namespaced_service, name, namespace)

    def create_stateful_set(self, namespace: str, body: client.V1StatefulSet) -> client.V1StatefulSet:
        return self._write("create statefulset", self._apps.create_namespaced_stateful_set, namespace, body)

    def stateful_set_exists(self, namespace: str, name: str) -> bool:
        return self._exists("get statefulset", self._apps.read_namespaced_stateful_set, name, namespace)

    def list_stateful_sets(self, namespace: str) -> List[client.V1StatefulSet]:
        result = self._call("list statefulsets", self._apps.list_namespaced_stateful_set, namespace)
        return list(result.items or [])

    def scale_stateful_set(self, namespace: str, name: str, replicas: int) -> client.V1StatefulSet:
        return self._call(
            "scale statefulset",
            self._apps.patch_namespaced_stateful_set,
            name,
            namespace,
            {"spec": {"replicas": replicas}},
        )

    def delete_stateful_set(self, namespace: str, name: str) -> None:
        self._call("delete statefulset", self._apps.delete_namespaced_stateful_set, name, namespace)

    def delete_persistent_volume_claim(self, namespace: str, name: str) -> None:
        self._call(
            "delete persistent volume claim",
            self._core.delete_namespaced_persistent_volume_claim,
            name,
            namespace,
        )

    def read_pod(self, namespace: str, name: str) -> client.V1Pod:
        return self._call("get pod", self._core.read_namespaced_pod, name, namespace)


__all__ = ["SubstrateClient", "translate_api_exception", "RETRYABLE_STATUSES"]
