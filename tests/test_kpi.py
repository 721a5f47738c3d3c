import csv
import io

import pytest

from schoolhub.services.kpi import CSV_HEADER, calculate_achievement

pytestmark = pytest.mark.anyio


async def create_kpi(client, headers, **overrides):
    payload = {
        "kpi_name": "Tingkat Kelulusan",
        "kpi_category": "Akademik",
        "academic_year": "2024/2025",
        "period": "Semester 1",
        "target_value": 95,
        "achieved_value": 57,
        "priority": 1,
    }
    payload.update(overrides)
    response = await client.post("/api/kpi", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


def test_calculate_achievement():
    assert calculate_achievement(57, 95) == 60.0
    assert calculate_achievement(80, 80) == 100.0
    assert calculate_achievement(None, 95) is None
    assert calculate_achievement(10, 0) is None


async def test_achievement_derived_on_create_and_update(client, auth_headers):
    kpi = await create_kpi(client, auth_headers)
    assert kpi["achievement_percentage"] == 60.0

    response = await client.put(f"/api/kpi/{kpi['id']}", json={"achieved_value": 76}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["achievement_percentage"] == 80.0


async def test_zero_target_leaves_achievement_unset(client, auth_headers):
    kpi = await create_kpi(client, auth_headers, target_value=0, achieved_value=10)

    assert kpi["achievement_percentage"] is None


async def test_duplicate_kpi_rejected(client, auth_headers):
    await create_kpi(client, auth_headers)

    response = await client.post(
        "/api/kpi",
        json={
            "kpi_name": "Tingkat Kelulusan",
            "kpi_category": "Akademik",
            "academic_year": "2024/2025",
            "period": "Semester 1",
            "target_value": 90,
        },
        headers=auth_headers,
    )
    assert response.status_code == 400


async def test_critical_kpis(client, auth_headers):
    await create_kpi(client, auth_headers)
    await create_kpi(client, auth_headers, kpi_name="Kehadiran Guru", achieved_value=94)
    await create_kpi(client, auth_headers, kpi_name="Prestasi Lomba", priority=4, achieved_value=10)

    response = await client.get("/api/kpi/critical", headers=auth_headers)

    names = [kpi["kpi_name"] for kpi in response.json()["data"]]
    assert names == ["Tingkat Kelulusan"]


async def test_statistics(client, auth_headers):
    await create_kpi(client, auth_headers)
    await create_kpi(client, auth_headers, kpi_name="Kehadiran Guru", achieved_value=95)

    response = await client.get("/api/kpi/statistics", headers=auth_headers)

    stats = response.json()["data"]
    assert stats["total_kpis"] == 2
    assert stats["average_achievement"] == 80.0
    assert stats["excellent"] == 1
    assert stats["needs_attention"] == 1


async def test_csv_export(client, auth_headers):
    await create_kpi(client, auth_headers, analysis="Perlu program bimbingan, terutama kelas XII")

    response = await client.get(
        "/api/kpi/export", params={"format": "csv", "academic_year": "2024/2025"}, headers=auth_headers
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "KPI_Report_2024-2025_all.csv" in response.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0] == CSV_HEADER
    assert rows[1][0] == "Tingkat Kelulusan"
    assert rows[1][9] == "Perlu program bimbingan, terutama kelas XII"


async def test_json_export(client, auth_headers):
    await create_kpi(client, auth_headers)

    response = await client.get("/api/kpi/export", headers=auth_headers)

    data = response.json()["data"]
    assert data["metadata"]["total"] == 1
    assert data["kpis"][0]["kpi_name"] == "Tingkat Kelulusan"


async def test_update_rejects_null_target(client, auth_headers):
    kpi = await create_kpi(client, auth_headers)

    response = await client.put(f"/api/kpi/{kpi['id']}", json={"target_value": None}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_statistics_for_one_year(client, auth_headers):
    await create_kpi(client, auth_headers)
    await create_kpi(client, auth_headers, academic_year="2023/2024")
    await create_kpi(client, auth_headers, kpi_name="Kehadiran Guru", achieved_value=95)

    response = await client.get("/api/kpi/statistics", params={"academic_year": "2024/2025"}, headers=auth_headers)
    stats = response.json()["data"]
    assert stats["total_kpis"] == 2
    assert stats["critical"] == 1

    response = await client.get("/api/kpi/critical", params={"academic_year": "2023/2024"}, headers=auth_headers)
    assert [kpi["academic_year"] for kpi in response.json()["data"]] == ["2023/2024"]
