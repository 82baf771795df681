"""
Tests para el módulo de tiendas (scoped por tenant)
"""
from uuid import uuid4

from app.modules.stores.models import Store


class TestStoreEndpoints:

    def test_create_and_get(self, client, auth_headers):
        response = client.post("/api/v1/stores/", json={"name": "Downtown", "address": "1 Elm St"}, headers=auth_headers())
        assert response.status_code == 201
        created = response.json()
        assert created["name"] == "Downtown"
        assert created["lottery_bin_count"] is None
        assert created["is_active"] is True

        response = client.get(f"/api/v1/stores/{created['id']}", headers=auth_headers("viewer"))
        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    def test_duplicate_name_conflict(self, client, store, auth_headers):
        response = client.post("/api/v1/stores/", json={"name": store.name}, headers=auth_headers())
        assert response.status_code == 409

    def test_same_name_allowed_in_other_tenant(self, client, store, auth_headers):
        response = client.post("/api/v1/stores/", json={"name": store.name}, headers=auth_headers(tenant=uuid4()))
        assert response.status_code == 201

    def test_list_is_tenant_scoped(self, client, db_session, store, auth_headers):
        db_session.add(Store(tenant_id=uuid4(), name="Elsewhere"))
        db_session.commit()

        response = client.get("/api/v1/stores/", headers=auth_headers("cashier"))
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert [s["name"] for s in body["stores"]] == ["Main Street Market"]

    def test_update_does_not_touch_bin_count(self, client, db_session, store, make_bins, auth_headers):
        make_bins(store, 3)
        response = client.patch(
            f"/api/v1/stores/{store.id}",
            json={"name": "Main Street Express", "lottery_bin_count": 150},
            headers=auth_headers("admin")
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Main Street Express"
        assert response.json()["lottery_bin_count"] == 3

    def test_get_other_tenant_store(self, client, store, auth_headers):
        response = client.get(f"/api/v1/stores/{store.id}", headers=auth_headers(tenant=uuid4()))
        assert response.status_code == 404

    def test_create_requires_owner_or_admin(self, client, auth_headers):
        response = client.post("/api/v1/stores/", json={"name": "Kiosk"}, headers=auth_headers("cashier"))
        assert response.status_code == 403


def test_health_is_public(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_access_token_uses_company_claim(client, store, tenant_id, user_id):
    from app.modules.auth.utils import create_access_token

    token = create_access_token({"sub": str(user_id), "companies": {str(tenant_id): "manager"}})
    headers = {"Authorization": f"Bearer {token}", "X-Company-ID": str(tenant_id)}
    response = client.get("/api/v1/stores/", headers=headers)
    assert response.status_code == 200

    other_company = {"Authorization": f"Bearer {token}", "X-Company-ID": str(uuid4())}
    response = client.get("/api/v1/stores/", headers=other_company)
    assert response.status_code == 403
