from datetime import date

import pytest

from schoolhub.models import Teacher
from schoolhub.services.teacher_evaluation import evaluation_status, program_status, total_score

pytestmark = pytest.mark.anyio

SCORES = {
    "teaching_quality": 5,
    "classroom_management": 4,
    "student_engagement": 4,
    "professional_development": 5,
    "collaboration": 4,
    "punctuality": 5,
}


@pytest.fixture
async def teacher(db, school):
    teacher = Teacher(school_id=school.id, employee_id="NIP-300", full_name="Sri Handayani")
    db.add(teacher)
    await db.commit()
    return teacher


def evaluation_payload(teacher, **overrides):
    payload = {
        "teacher_id": teacher.id,
        "evaluation_period": "Semester 1",
        "academic_year": "2024/2025",
        "recommendations": ["Gunakan media interaktif"],
        "development_goals": ["Sertifikasi guru penggerak"],
        **SCORES,
    }
    payload.update(overrides)
    return payload


def test_total_score_is_the_mean():
    assert total_score(SCORES) == 4.5
    assert total_score(dict.fromkeys(SCORES, 3)) == 3.0


def test_evaluation_status():
    assert evaluation_status(None, 7) == "draft"
    assert evaluation_status(date(2024, 12, 1), None) == "completed"
    assert evaluation_status(date(2024, 12, 1), 7) == "approved"


def test_program_status():
    today = date(2025, 3, 10)

    assert program_status(date(2025, 4, 1), None, today) == "planned"
    assert program_status(date(2025, 1, 1), date(2025, 2, 1), today) == "completed"
    assert program_status(date(2025, 3, 1), date(2025, 3, 31), today) == "ongoing"
    assert program_status(date(2025, 3, 1), None, today) == "ongoing"


async def test_create_and_list_evaluations(client, auth_headers, teacher):
    response = await client.post(
        "/api/teacher-evaluation/evaluations",
        json=evaluation_payload(teacher, evaluation_date="2024-12-01"),
        headers=auth_headers,
    )
    assert response.status_code == 201
    evaluation = response.json()["data"]
    assert evaluation["total_score"] == 4.5
    assert evaluation["status"] == "completed"
    assert evaluation["teacher_name"] == "Sri Handayani"
    assert evaluation["recommendations"] == ["Gunakan media interaktif"]
    assert evaluation["development_goals"] == ["Sertifikasi guru penggerak"]

    response = await client.post(
        "/api/teacher-evaluation/evaluations", json=evaluation_payload(teacher), headers=auth_headers
    )
    assert response.status_code == 400

    response = await client.get("/api/teacher-evaluation/evaluations", headers=auth_headers)
    assert response.json()["data"]["pagination"]["total"] == 1

    response = await client.get("/api/teacher-evaluation/stats", headers=auth_headers)
    stats = response.json()["data"]
    assert stats["total_evaluations"] == 1
    assert stats["average_score"] == 4.5
    assert stats["excellent_count"] == 1
    assert stats["by_period"]["Semester 1"]["count"] == 1


async def test_update_recomputes_total(client, auth_headers, teacher):
    created = await client.post(
        "/api/teacher-evaluation/evaluations", json=evaluation_payload(teacher), headers=auth_headers
    )
    evaluation_id = created.json()["data"]["id"]

    response = await client.put(
        f"/api/teacher-evaluation/evaluations/{evaluation_id}",
        json={"teaching_quality": 2, "punctuality": 2},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_score"] == 3.5
    assert data["recommendations"] == ["Gunakan media interaktif"]


async def test_score_out_of_range(client, auth_headers, teacher):
    response = await client.post(
        "/api/teacher-evaluation/evaluations",
        json=evaluation_payload(teacher, teaching_quality=6),
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_teacher_cannot_evaluate(client, teacher_headers, teacher):
    response = await client.post(
        "/api/teacher-evaluation/evaluations", json=evaluation_payload(teacher), headers=teacher_headers
    )

    assert response.status_code == 403


async def test_evaluate_teacher_from_other_school(client, db, auth_headers, other_school):
    outsider = Teacher(school_id=other_school.id, employee_id="NIP-900", full_name="Guru Lain")
    db.add(outsider)
    await db.commit()

    response = await client.post(
        "/api/teacher-evaluation/evaluations", json=evaluation_payload(outsider), headers=auth_headers
    )

    assert response.status_code == 404


async def test_development_program_flow(client, auth_headers, teacher):
    response = await client.post(
        "/api/teacher-evaluation/development-programs",
        json={
            "teacher_id": teacher.id,
            "program_name": "Pelatihan Kurikulum Merdeka",
            "program_type": "workshop",
            "start_date": "2020-01-10",
            "end_date": "2020-01-12",
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    program = response.json()["data"]
    assert program["status"] == "completed"
    assert program["teacher_name"] == "Sri Handayani"

    response = await client.put(
        f"/api/teacher-evaluation/development-programs/{program['id']}",
        json={"status": "cancelled"},
        headers=auth_headers,
    )
    assert response.json()["data"]["status"] == "cancelled"

    response = await client.get(
        "/api/teacher-evaluation/development-programs", params={"teacher_id": teacher.id}, headers=auth_headers
    )
    assert len(response.json()["data"]) == 1

    response = await client.delete(
        f"/api/teacher-evaluation/development-programs/{program['id']}", headers=auth_headers
    )
    assert response.status_code == 200

    response = await client.get(
        f"/api/teacher-evaluation/development-programs/{program['id']}", headers=auth_headers
    )
    assert response.status_code == 404


async def test_program_end_before_start(client, auth_headers, teacher):
    response = await client.post(
        "/api/teacher-evaluation/development-programs",
        json={
            "teacher_id": teacher.id,
            "program_name": "Seminar Asesmen",
            "program_type": "seminar",
            "start_date": "2025-02-10",
            "end_date": "2025-02-01",
        },
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_update_rejects_null_score(client, auth_headers, teacher):
    created = await client.post(
        "/api/teacher-evaluation/evaluations", json=evaluation_payload(teacher), headers=auth_headers
    )
    evaluation_id = created.json()["data"]["id"]

    response = await client.put(
        f"/api/teacher-evaluation/evaluations/{evaluation_id}",
        json={"teaching_quality": None},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "teaching_quality"

    response = await client.get(f"/api/teacher-evaluation/evaluations/{evaluation_id}", headers=auth_headers)
    assert response.json()["data"]["total_score"] == 4.5
