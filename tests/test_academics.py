from datetime import date

import pytest

from schoolhub.models import Student, Teacher, Subject, AcademicRecord, StudentAttendance
from schoolhub.services.academic import (
    AcademicService, current_academic_year, current_semester, attendance_status, grade_letter,
)

pytestmark = pytest.mark.anyio


@pytest.fixture
async def roster(db, school):
    teacher = Teacher(school_id=school.id, employee_id="NIP-001", full_name="Ahmad Fauzi")
    math = Subject(subject_code="MTK", subject_name="Matematika")
    physics = Subject(subject_code="FIS", subject_name="Fisika")
    students = [
        Student(school_id=school.id, student_id=f"S-{i:03d}", full_name=f"Siswa {i}", grade="X")
        for i in range(1, 4)
    ]
    db.add_all([teacher, math, physics, *students])
    await db.commit()
    return {"teacher": teacher, "math": math, "physics": physics, "students": students}


def record_payload(roster, **overrides):
    payload = {
        "student_id": roster["students"][0].id,
        "subject_id": roster["math"].id,
        "teacher_id": roster["teacher"].id,
        "semester": "1",
        "academic_year": "2024/2025",
        "final_score": 82.5,
    }
    payload.update(overrides)
    return payload


async def test_create_record_and_reject_duplicate(client, auth_headers, roster):
    response = await client.post("/api/academic/records", json=record_payload(roster), headers=auth_headers)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["subject_name"] == "Matematika"
    assert data["teacher_name"] == "Ahmad Fauzi"
    assert data["student_name"] == "Siswa 1"

    response = await client.post(
        "/api/academic/records", json=record_payload(roster, final_score=90), headers=auth_headers
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Nilai untuk siswa, mata pelajaran, semester, dan tahun akademik ini sudah ada"

    response = await client.post(
        "/api/academic/records", json=record_payload(roster, semester="2"), headers=auth_headers
    )
    assert response.status_code == 201


async def test_record_validation(client, auth_headers, roster):
    response = await client.post(
        "/api/academic/records",
        json=record_payload(roster, final_score=120, semester="3", academic_year="2024/2026"),
        headers=auth_headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    fields = {error["field"] for error in body["errors"]}
    assert {"final_score", "semester", "academic_year"} <= fields


async def test_record_for_other_school_student(client, db, auth_headers, roster, other_school):
    outsider = Student(school_id=other_school.id, student_id="S-900", full_name="Siswa Lain", grade="X")
    db.add(outsider)
    await db.commit()

    response = await client.post(
        "/api/academic/records", json=record_payload(roster, student_id=outsider.id), headers=auth_headers
    )
    assert response.status_code == 404


async def test_teacher_cannot_delete_record(client, auth_headers, teacher_headers, roster):
    created = await client.post("/api/academic/records", json=record_payload(roster), headers=auth_headers)
    record_id = created.json()["data"]["id"]

    response = await client.delete(f"/api/academic/records/{record_id}", headers=teacher_headers)
    assert response.status_code == 403

    response = await client.delete(f"/api/academic/records/{record_id}", headers=auth_headers)
    assert response.status_code == 200

    response = await client.get(f"/api/academic/records/{record_id}", headers=auth_headers)
    assert response.status_code == 404


async def test_students_listing_is_paginated(client, auth_headers, roster):
    response = await client.get("/api/academic/students", params={"limit": 2}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["pagination"]["total"] == 3
    assert len(data["items"]) == 2
    assert data["pagination"]["total_pages"] == 2


async def test_academic_stats(db, school, roster):
    students = roster["students"]
    db.add_all([
        AcademicRecord(student_id=students[0].id, subject_id=roster["math"].id, teacher_id=roster["teacher"].id,
                       semester="1", academic_year="2024/2025", final_score=90),
        AcademicRecord(student_id=students[1].id, subject_id=roster["math"].id, teacher_id=roster["teacher"].id,
                       semester="1", academic_year="2024/2025", final_score=60),
        StudentAttendance(student_id=students[0].id, date=date(2024, 10, 1), status="present"),
        StudentAttendance(student_id=students[1].id, date=date(2024, 10, 1), status="present"),
        StudentAttendance(student_id=students[2].id, date=date(2024, 10, 1), status="sick"),
        StudentAttendance(student_id=students[2].id, date=date(2024, 10, 2), status="absent"),
    ])
    await db.commit()

    stats = await AcademicService().get_academic_stats(db, school.id, today=date(2024, 10, 15))

    assert stats["total_students"] == 3
    assert stats["total_teachers"] == 1
    assert stats["academic_year"] == "2024/2025"
    assert stats["average_score"] == 75.0
    assert stats["passing_rate"] == 50.0
    assert stats["attendance_rate"] == 50.0


async def test_grade_distribution(db, school, roster):
    students = roster["students"]
    for student, score in zip(students, [95, 84, 55]):
        db.add(AcademicRecord(student_id=student.id, subject_id=roster["physics"].id, teacher_id=roster["teacher"].id,
                              semester="2", academic_year="2024/2025", final_score=score))
    await db.commit()

    distribution = await AcademicService().get_grade_distribution(db, school.id, academic_year="2024/2025")

    counts = {row["grade"]: row["count"] for row in distribution}
    assert counts == {"A": 1, "B": 1, "C": 0, "D": 0, "E": 1}


def test_academic_year_starts_in_july():
    assert current_academic_year(date(2024, 7, 1)) == "2024/2025"
    assert current_academic_year(date(2025, 6, 30)) == "2024/2025"
    assert current_semester(date(2024, 9, 1)) == "1"
    assert current_semester(date(2025, 3, 1)) == "2"


def test_grade_and_attendance_bands():
    assert grade_letter(90) == "A"
    assert grade_letter(79.9) == "C"
    assert grade_letter(10) == "E"
    assert attendance_status(95) == "excellent"
    assert attendance_status(85) == "fair"
    assert attendance_status(50) == "poor"
