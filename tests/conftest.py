"""Shared fixtures: an in-memory Kubernetes substrate and wired-up components."""
from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from kubernetes import client

from kubecraft.config import AppConfig, ReadinessConfig
from kubecraft.errors import ConflictError, KubecraftError, NotFoundError
from kubecraft.provisioning.authorization import AuthorizationListMaintainer
from kubecraft.provisioning.tenants import TenantProvisioner
from kubecraft.provisioning.workloads import WorkloadLifecycleManager

Key = Tuple[str, str]


def _matches_selector(labels: Optional[Dict[str, str]], selector: str) -> bool:
    labels = labels or {}
    for term in filter(None, selector.split(",")):
        key, equals, value = term.partition("=")
        if not equals:
            if key not in labels:
                return False
        elif labels.get(key) != value:
            return False
    return True


class FakeSubstrate:
    """In-memory stand-in for ``SubstrateClient`` holding Kubernetes model objects."""

    def __init__(self) -> None:
        self.namespaces: Dict[str, client.V1Namespace] = {}
        self.service_accounts: Dict[Key, client.V1ServiceAccount] = {}
        self.roles: Dict[Key, client.V1Role] = {}
        self.role_bindings: Dict[Key, client.V1RoleBinding] = {}
        self.quotas: Dict[Key, client.V1ResourceQuota] = {}
        self.cluster_role_bindings: Dict[str, client.V1ClusterRoleBinding] = {}
        self.services: Dict[Key, client.V1Service] = {}
        self.stateful_sets: Dict[Key, client.V1StatefulSet] = {}
        self.claims: Dict[Key, str] = {}
        self.pods: Dict[Key, client.V1Pod] = {}
        self.failures: Dict[str, KubecraftError] = {}
        self.calls: List[str] = []
        self.pods_become_ready = True
        self.before_replace: Optional[Callable[["FakeSubstrate", str], None]] = None
        self.closed = False

    # -- helpers -------------------------------------------------------
    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    def _require_namespace(self, namespace: str) -> None:
        if namespace not in self.namespaces:
            raise NotFoundError(f'namespaces "{namespace}" not found')

    def install_authorization_list(self, name: str = "kc-users-capacity-check") -> None:
        self.cluster_role_bindings[name] = client.V1ClusterRoleBinding(
            metadata=client.V1ObjectMeta(name=name, resource_version="1"),
            role_ref=client.V1RoleRef(
                api_group="rbac.authorization.k8s.io", kind="ClusterRole", name="kubecraft-capacity-checker"
            ),
            subjects=None,
        )

    def bump_authorization_list(self, name: str, subject: client.RbacV1Subject) -> None:
        binding = self.cluster_role_bindings[name]
        binding.subjects = list(binding.subjects or []) + [subject]
        binding.metadata.resource_version = str(int(binding.metadata.resource_version) + 1)

    def authorization_entries(self, name: str = "kc-users-capacity-check") -> List[Tuple[str, str]]:
        binding = self.cluster_role_bindings[name]
        return [(subject.name, subject.namespace) for subject in binding.subjects or []]

    def add_running_pod(self, namespace: str, name: str, memory: str, label_value: str = "mc-server") -> None:
        self.pods[(namespace, name)] = client.V1Pod(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels={"app": label_value}),
            spec=client.V1PodSpec(
                containers=[
                    client.V1Container(
                        name="main", resources=client.V1ResourceRequirements(requests={"memory": memory})
                    )
                ]
            ),
            status=client.V1PodStatus(phase="Running"),
        )

    def _spawn_pod(self, namespace: str, stateful_set: client.V1StatefulSet) -> None:
        name = f"{stateful_set.metadata.name}-0"
        template = stateful_set.spec.template
        conditions = [client.V1PodCondition(type="Ready", status="True" if self.pods_become_ready else "False")]
        self.pods[(namespace, name)] = client.V1Pod(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=dict(template.metadata.labels)),
            spec=copy.deepcopy(template.spec),
            status=client.V1PodStatus(phase="Running", conditions=conditions),
        )

    # -- namespaces and identities --------------------------------------
    def create_namespace(self, body):
        self._record("create_namespace")
        name = body.metadata.name
        if name in self.namespaces:
            raise ConflictError(f'namespaces "{name}" already exists')
        self.namespaces[name] = copy.deepcopy(body)
        return body

    def namespace_exists(self, name: str) -> bool:
        self._record("namespace_exists")
        return name in self.namespaces

    def list_namespaces(self, label_selector: str):
        self._record("list_namespaces")
        return [ns for ns in self.namespaces.values() if _matches_selector(ns.metadata.labels, label_selector)]

    def delete_namespace(self, name: str) -> None:
        self._record("delete_namespace")
        if name not in self.namespaces:
            raise NotFoundError(f'namespaces "{name}" not found')
        del self.namespaces[name]
        for store in (
            self.service_accounts,
            self.roles,
            self.role_bindings,
            self.quotas,
            self.services,
            self.stateful_sets,
            self.claims,
            self.pods,
        ):
            for key in [key for key in store if key[0] == name]:
                del store[key]

    def create_service_account(self, namespace: str, body):
        self._record("create_service_account")
        self._require_namespace(namespace)
        self.service_accounts[(namespace, body.metadata.name)] = copy.deepcopy(body)
        return body

    def create_token(self, namespace: str, service_account: str, expiry_seconds: int) -> str:
        self._record("create_token")
        if (namespace, service_account) not in self.service_accounts:
            raise NotFoundError(f'serviceaccounts "{service_account}" not found')
        return f"token-{namespace}-{service_account}-{expiry_seconds}"

    def create_role(self, namespace: str, body):
        self._record("create_role")
        self._require_namespace(namespace)
        self.roles[(namespace, body.metadata.name)] = copy.deepcopy(body)
        return body

    def create_role_binding(self, namespace: str, body):
        self._record("create_role_binding")
        self._require_namespace(namespace)
        self.role_bindings[(namespace, body.metadata.name)] = copy.deepcopy(body)
        return body

    def create_resource_quota(self, namespace: str, body):
        self._record("create_resource_quota")
        self._require_namespace(namespace)
        self.quotas[(namespace, body.metadata.name)] = copy.deepcopy(body)
        return body

    # -- authorization list ---------------------------------------------
    def read_cluster_role_binding(self, name: str):
        self._record("read_cluster_role_binding")
        if name not in self.cluster_role_bindings:
            raise NotFoundError(f'clusterrolebindings "{name}" not found')
        return copy.deepcopy(self.cluster_role_bindings[name])

    def replace_cluster_role_binding(self, name: str, body):
        self._record("replace_cluster_role_binding")
        if self.before_replace is not None:
            self.before_replace(self, name)
        stored = self.cluster_role_bindings[name]
        if body.metadata.resource_version != stored.metadata.resource_version:
            raise ConflictError("the object has been modified; please apply your changes to the latest version")
        updated = copy.deepcopy(body)
        updated.metadata.resource_version = str(int(stored.metadata.resource_version) + 1)
        self.cluster_role_bindings[name] = updated
        return copy.deepcopy(updated)

    # -- cluster-wide reads ---------------------------------------------
    def list_services_all_namespaces(self, label_selector: str):
        self._record("list_services_all_namespaces")
        return [
            copy.deepcopy(svc)
            for svc in self.services.values()
            if _matches_selector(svc.metadata.labels, label_selector)
        ]

    def list_pods_all_namespaces(self, label_selector: str, field_selector: Optional[str] = None):
        self._record("list_pods_all_namespaces")
        pods = [pod for pod in self.pods.values() if _matches_selector(pod.metadata.labels, label_selector)]
        if field_selector == "status.phase=Running":
            pods = [pod for pod in pods if pod.status and pod.status.phase == "Running"]
        return [copy.deepcopy(pod) for pod in pods]

    # -- workload objects -----------------------------------------------
    def create_service(self, namespace: str, body):
        self._record("create_service")
        self._require_namespace(namespace)
        key = (namespace, body.metadata.name)
        if key in self.services:
            raise ConflictError(f'services "{body.metadata.name}" already exists')
        wanted = {port.node_port for port in body.spec.ports}
        for existing in self.services.values():
            if wanted & {port.node_port for port in existing.spec.ports}:
                raise ConflictError(
                    f'Service "{body.metadata.name}" is invalid: provided port is already allocated'
                )
        self.services[key] = copy.deepcopy(body)
        return body

    def read_service(self, namespace: str, name: str):
        self._record("read_service")
        if (namespace, name) not in self.services:
            raise NotFoundError(f'services "{name}" not found')
        return copy.deepcopy(self.services[(namespace, name)])

    def delete_service(self, namespace: str, name: str) -> None:
        self._record("delete_service")
        if (namespace, name) not in self.services:
            raise NotFoundError(f'services "{name}" not found')
        del self.services[(namespace, name)]

    def create_stateful_set(self, namespace: str, body):
        self._record("create_stateful_set")
        self._require_namespace(namespace)
        key = (namespace, body.metadata.name)
        if key in self.stateful_sets:
            raise ConflictError(f'statefulsets.apps "{body.metadata.name}" already exists')
        stored = copy.deepcopy(body)
        stored.metadata.creation_timestamp = datetime.now(timezone.utc)
        self.stateful_sets[key] = stored
        claim = body.spec.volume_claim_templates[0].metadata.name
        self.claims[(namespace, f"{claim}-{body.metadata.name}-0")] = body.metadata.name
        if stored.spec.replicas:
            self._spawn_pod(namespace, stored)
        return body

    def stateful_set_exists(self, namespace: str, name: str) -> bool:
        self._record("stateful_set_exists")
        return (namespace, name) in self.stateful_sets

    def list_stateful_sets(self, namespace: str):
        self._record("list_stateful_sets")
        return [copy.deepcopy(sts) for key, sts in self.stateful_sets.items() if key[0] == namespace]

    def scale_stateful_set(self, namespace: str, name: str, replicas: int):
        self._record("scale_stateful_set")
        if (namespace, name) not in self.stateful_sets:
            raise NotFoundError(f'statefulsets.apps "{name}" not found')
        stateful_set = self.stateful_sets[(namespace, name)]
        stateful_set.spec.replicas = replicas
        if replicas:
            self._spawn_pod(namespace, stateful_set)
        else:
            self.pods.pop((namespace, f"{name}-0"), None)
        return copy.deepcopy(stateful_set)

    def delete_stateful_set(self, namespace: str, name: str) -> None:
        self._record("delete_stateful_set")
        if (namespace, name) not in self.stateful_sets:
            raise NotFoundError(f'statefulsets.apps "{name}" not found')
        del self.stateful_sets[(namespace, name)]
        self.pods.pop((namespace, f"{name}-0"), None)

    def delete_persistent_volume_claim(self, namespace: str, name: str) -> None:
        self._record("delete_persistent_volume_claim")
        if (namespace, name) not in self.claims:
            raise NotFoundError(f'persistentvolumeclaims "{name}" not found')
        del self.claims[(namespace, name)]

    def read_pod(self, namespace: str, name: str):
        self._record("read_pod")
        if (namespace, name) not in self.pods:
            raise NotFoundError(f'pods "{name}" not found')
        return copy.deepcopy(self.pods[(namespace, name)])

    def close(self) -> None:
        self.closed = True


class RecordingAuditPublisher:
    """Collects audit events instead of publishing them."""

    def __init__(self) -> None:
        self.events = []

    def publish(self, tenant, action, outcome, details=None) -> None:
        self.events.append((tenant, action, outcome, dict(details or {})))


@pytest.fixture
def settings() -> AppConfig:
    return AppConfig(readiness=ReadinessConfig(max_attempts=3, poll_interval_seconds=0.0))


@pytest.fixture
def substrate() -> FakeSubstrate:
    fake = FakeSubstrate()
    fake.install_authorization_list()
    return fake


@pytest.fixture
def audit() -> RecordingAuditPublisher:
    return RecordingAuditPublisher()


@pytest.fixture
def authorization_list(substrate, settings) -> AuthorizationListMaintainer:
    return AuthorizationListMaintainer(substrate, settings)


@pytest.fixture
def provisioner(substrate, settings, authorization_list, audit) -> TenantProvisioner:
    return TenantProvisioner(substrate, settings, authorization_list, audit)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def workloads(substrate, settings, audit, sleeps) -> WorkloadLifecycleManager:
    return WorkloadLifecycleManager(substrate, settings, audit_publisher=audit, sleep=sleeps.append)


@pytest.fixture
def alice(provisioner) -> str:
    provisioner.register("alice")
    return "alice"
