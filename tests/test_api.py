import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from kubecraft.errors import ForbiddenError, SubstrateError
from kubecraft.main import create_app

AUTH = {"Authorization": "Bearer tenant-token"}


@pytest.fixture
def tokens():
    return []


@pytest.fixture
def app_settings(settings):
    return settings.model_copy(update={"admin_token": SecretStr("let-me-in")})


@pytest.fixture
def api(app_settings, substrate, provisioner, tokens):
    def factory(tenant, token):
        tokens.append((tenant, token))
        return substrate

    app = create_app(app_settings, provisioner=provisioner, tenant_substrate_factory=factory)
    return TestClient(app)


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.text == "OK"


def test_register(api, substrate):
    response = api.post("/register", json={"tenantName": "alice"})
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    assert body["tenantName"] == "alice"
    assert body["token"].startswith("token-mc-alice-alice")
    assert "mc-alice" in substrate.namespaces


def test_register_accepts_legacy_username_field(api):
    response = api.post("/register", json={"username": "bob"})
    assert response.status_code == 201
    assert response.json()["tenantName"] == "bob"


def test_register_invalid_name(api):
    response = api.post("/register", json={"tenantName": "No"})
    assert response.status_code == 400
    assert response.json()["status"] == "error"
    assert "3-16 characters" in response.json()["message"]


def test_register_malformed_json(api):
    response = api.post("/register", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"status": "error", "message": "Invalid JSON format"}


def test_register_duplicate(api):
    api.post("/register", json={"tenantName": "alice"})
    response = api.post("/register", json={"tenantName": "alice"})
    assert response.status_code == 409


def test_register_over_ceiling(api, provisioner):
    for index in range(15):
        provisioner.register(f"tenant{index}")
    response = api.post("/register", json={"tenantName": "latecomer"})
    assert response.status_code == 503
    assert "max tenant limit" in response.json()["message"]


def test_deregister_requires_admin_token(api, substrate):
    api.post("/register", json={"tenantName": "alice"})
    assert api.delete("/tenants/alice").status_code == 401
    assert api.delete("/tenants/alice", headers={"X-Admin-Token": "wrong"}).status_code == 401
    response = api.delete("/tenants/alice", headers={"X-Admin-Token": "let-me-in"})
    assert response.status_code == 200
    assert response.json() == {"status": "success", "tenantName": "alice"}
    assert substrate.namespaces == {}


def test_deregister_disabled_without_admin_token(settings, substrate, provisioner):
    client = TestClient(create_app(settings, provisioner=provisioner, tenant_substrate_factory=lambda t, k: substrate))
    assert client.delete("/tenants/alice", headers={"X-Admin-Token": "anything"}).status_code == 403


def test_workload_routes_require_bearer_token(api, provisioner):
    provisioner.register("alice")
    response = api.get("/tenants/alice/workloads")
    assert response.status_code == 401


def test_workload_lifecycle_over_http(api, provisioner, substrate, tokens):
    provisioner.register("alice")

    created = api.post("/tenants/alice/workloads", json={"name": "survival"}, headers=AUTH)
    assert created.status_code == 201
    assert created.json() == {"name": "survival", "port": 30000, "address": "localhost:30000"}
    assert tokens[-1] == ("alice", "tenant-token")

    listing = api.get("/tenants/alice/workloads", headers=AUTH).json()["workloads"]
    assert [(item["name"], item["status"], item["port"]) for item in listing] == [("survival", "running", 30000)]
    assert listing[0]["createdAt"]

    assert api.post("/tenants/alice/workloads/survival/stop", headers=AUTH).json() == {
        "status": "success",
        "name": "survival",
    }
    assert api.get("/tenants/alice/workloads", headers=AUTH).json()["workloads"][0]["status"] == "stopped"

    started = api.post("/tenants/alice/workloads/survival/start", headers=AUTH)
    assert started.json()["port"] == 30000

    assert api.delete("/tenants/alice/workloads/survival", headers=AUTH).status_code == 200
    assert api.get("/tenants/alice/workloads", headers=AUTH).json() == {"workloads": []}
    assert substrate.closed


def test_unknown_workload_is_404(api, provisioner):
    provisioner.register("alice")
    response = api.post("/tenants/alice/workloads/ghost/stop", headers=AUTH)
    assert response.status_code == 404
    assert response.json()["status"] == "error"


def test_substrate_failure_is_500(api, provisioner, substrate):
    provisioner.register("alice")
    substrate.failures["list_stateful_sets"] = SubstrateError("list statefulsets: boom", status=500)
    response = api.get("/tenants/alice/workloads", headers=AUTH)
    assert response.status_code == 500
    assert response.json() == {"status": "error", "message": "list statefulsets: boom"}


def test_capacity_route(api, provisioner):
    provisioner.register("alice")
    body = api.get("/tenants/alice/capacity", headers=AUTH).json()
    assert body["totalMiB"] == 14336
    assert body["admissible"] is True


def test_token_for_another_tenant_is_403(api, provisioner, substrate):
    provisioner.register("alice")
    substrate.failures["list_stateful_sets"] = ForbiddenError(
        'list statefulsets: statefulsets.apps is forbidden: User "system:serviceaccount:mc-bob:bob" cannot list'
    )
    response = api.get("/tenants/alice/workloads", headers=AUTH)
    assert response.status_code == 403
    assert response.json()["status"] == "error"
    assert "forbidden" in response.json()["message"]
