from datetime import timedelta

import pytest

from conftest import PASSWORD, create_principal, token_for
from schoolhub.services.auth import create_access_token

pytestmark = pytest.mark.anyio


def register_payload(**overrides):
    payload = {
        "username": "kepsek_baru",
        "email": "kepsek.baru@sekolah.sch.id",
        "password": "password-aman",
        "full_name": "Dewi Lestari",
        "npsn": "20100001",
    }
    payload.update(overrides)
    return payload


async def test_register_principal(client, school):
    response = await client.post("/api/auth/register", json=register_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["token_type"] == "bearer"
    assert body["data"]["access_token"]
    assert body["data"]["user"]["role"] == "principal"
    assert body["data"]["user"]["school"]["npsn"] == "20100001"


async def test_register_unknown_npsn(client, school):
    response = await client.post("/api/auth/register", json=register_payload(npsn="99999999"))

    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["error"] == "NOT_FOUND"


async def test_register_school_with_principal(client, principal):
    response = await client.post("/api/auth/register", json=register_payload())

    assert response.status_code == 400
    assert response.json()["message"] == "Sekolah ini sudah memiliki kepala sekolah"


async def test_register_validation_errors(client, school):
    response = await client.post("/api/auth/register", json=register_payload(password="short", email="bukan-email"))

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    fields = {error["field"] for error in body["errors"]}
    assert {"password", "email"} <= fields


async def test_login_with_username_and_email(client, principal):
    response = await client.post("/api/auth/login", json={"username": "kepsek", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["data"]["user"]["username"] == "kepsek"

    response = await client.post("/api/auth/login", json={"username": "kepsek@sekolah.sch.id", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["data"]["user"]["last_login"] is not None


async def test_login_wrong_password(client, principal):
    response = await client.post("/api/auth/login", json={"username": "kepsek", "password": "salah-total"})

    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_CREDENTIALS"


async def test_profile_requires_token(client):
    response = await client.get("/api/auth/profile")

    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"


async def test_profile_with_invalid_token(client):
    response = await client.get("/api/auth/profile", headers={"Authorization": "Bearer bukan.token.valid"})

    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_TOKEN"


async def test_profile_with_expired_token(client, principal, school):
    token = create_access_token(
        {"sub": str(principal.id), "username": principal.username, "role": "principal", "school_id": school.id},
        expires_delta=timedelta(minutes=-5),
    )
    response = await client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["error"] == "TOKEN_EXPIRED"


async def test_profile_resolves_led_school(client, auth_headers):
    response = await client.get("/api/auth/profile", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"]["school"]["school_name"] == "SMA Negeri 1 Contoh"


async def test_change_password(client, auth_headers):
    response = await client.post(
        "/api/auth/change-password",
        json={"current_password": "tidak-cocok", "new_password": "password-baru"},
        headers=auth_headers,
    )
    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_PASSWORD"

    response = await client.post(
        "/api/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "password-baru"},
        headers=auth_headers,
    )
    assert response.status_code == 200

    response = await client.post("/api/auth/login", json={"username": "kepsek", "password": "password-baru"})
    assert response.status_code == 200


async def test_teacher_cannot_approve_budget(client, teacher_headers):
    response = await client.put("/api/finance/budgets/1/approve", headers=teacher_headers)

    assert response.status_code == 403
    assert response.json()["error"] == "FORBIDDEN"


async def test_principals_see_only_their_school(client, db, auth_headers, other_school):
    other_principal = await create_principal(db, other_school, username="kepsek2")
    other_headers = {"Authorization": f"Bearer {token_for(other_principal, other_school.id)}"}

    response = await client.post(
        "/api/finance/budgets",
        json={"budget_year": "2025", "period": "Tahunan", "budget_category": "Operasional", "budget_amount": 1000000},
        headers=auth_headers,
    )
    assert response.status_code == 201
    budget_id = response.json()["data"]["id"]

    response = await client.get(f"/api/finance/budgets/{budget_id}", headers=other_headers)
    assert response.status_code == 404
