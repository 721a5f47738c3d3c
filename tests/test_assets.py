import pytest

pytestmark = pytest.mark.anyio


async def create_asset(client, headers, code="INV-001", **overrides):
    payload = {
        "asset_code": code,
        "asset_name": "Proyektor Epson",
        "asset_category": "Elektronik",
        "acquisition_value": 7500000,
        "location": "Ruang Kelas X-1",
    }
    payload.update(overrides)
    response = await client.post("/api/assets", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


async def test_create_asset_defaults_to_good(client, auth_headers):
    asset = await create_asset(client, auth_headers)

    assert asset["condition"] == "good"
    assert asset["maintenance_count"] == 0


async def test_duplicate_asset_code(client, auth_headers):
    await create_asset(client, auth_headers)

    response = await client.post(
        "/api/assets",
        json={"asset_code": "INV-001", "asset_name": "Laptop", "asset_category": "Elektronik"},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Kode aset sudah digunakan"


async def test_maintenance_updates_condition(client, auth_headers):
    asset = await create_asset(client, auth_headers)

    response = await client.post(
        f"/api/assets/{asset['id']}/maintenance",
        json={
            "maintenance_date": "2025-01-15",
            "maintenance_type": "repair",
            "description": "Ganti lampu proyektor",
            "cost": 1500000,
            "condition_after": "under_repair",
        },
        headers=auth_headers,
    )
    assert response.status_code == 201

    response = await client.get(f"/api/assets/{asset['id']}", headers=auth_headers)
    data = response.json()["data"]
    assert data["condition"] == "under_repair"
    assert data["maintenance_count"] == 1


async def test_asset_with_maintenance_cannot_be_deleted(client, auth_headers):
    kept = await create_asset(client, auth_headers)
    removable = await create_asset(client, auth_headers, code="INV-002")
    await client.post(
        f"/api/assets/{kept['id']}/maintenance",
        json={"maintenance_date": "2025-01-15", "maintenance_type": "routine", "description": "Pembersihan filter"},
        headers=auth_headers,
    )

    response = await client.delete(f"/api/assets/{kept['id']}", headers=auth_headers)
    assert response.status_code == 400

    response = await client.delete(f"/api/assets/{removable['id']}", headers=auth_headers)
    assert response.status_code == 200

    response = await client.get(f"/api/assets/{removable['id']}", headers=auth_headers)
    assert response.status_code == 404


async def test_asset_stats(client, auth_headers):
    await create_asset(client, auth_headers)
    await create_asset(client, auth_headers, code="INV-002", condition="major_damage", acquisition_value=2500000)

    response = await client.get("/api/assets/stats", headers=auth_headers)

    stats = response.json()["data"]
    assert stats["total_assets"] == 2
    assert stats["total_value"] == 10000000
    assert stats["by_condition"]["major_damage"] == 1
    assert stats["needs_attention"] == 1


async def test_update_rejects_null_for_required_fields(client, auth_headers):
    asset = await create_asset(client, auth_headers)

    response = await client.put(f"/api/assets/{asset['id']}", json={"asset_name": None}, headers=auth_headers)
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert [error["field"] for error in body["errors"]] == ["asset_name"]

    response = await client.put(f"/api/assets/{asset['id']}", json={"location": None}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["location"] is None
    assert response.json()["data"]["asset_name"] == "Proyektor Epson"
