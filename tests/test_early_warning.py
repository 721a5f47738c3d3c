from datetime import date, timedelta

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from conftest import gemini_json, make_gateway
from schoolhub.api.deps import get_ai_gateway
from schoolhub.main import app
from schoolhub.models import (
    Student, Teacher, Subject, AcademicRecord, StudentAttendance, SchoolFinance, Asset, Report,
)
from schoolhub.services.academic import current_academic_year
from schoolhub.services.early_warning import (
    EarlyWarningService, WarningSnapshot,
    check_attendance, check_academic, check_financial, check_assets, check_teachers, check_deadlines,
)

pytestmark = pytest.mark.anyio

TODAY = date(2025, 3, 10)
ACTIONS = {"recommended_actions": [f"Langkah {i}" for i in range(1, 8)]}


def snapshot(**values):
    return WarningSnapshot(today=TODAY, academic_year="2024/2025", budget_year="2025", **values)


async def seed_school(db, school, today):
    """A school with one problem in every warning category."""
    teacher = Teacher(school_id=school.id, employee_id="NIP-200", full_name="Dedi Kurniawan")
    subject = Subject(subject_code="BIO", subject_name="Biologi")
    db.add_all([teacher, subject])
    await db.flush()

    for index in range(5):
        student = Student(school_id=school.id, student_id=f"W-{index:03d}", full_name=f"Murid {index}", grade="XI")
        db.add(student)
        await db.flush()
        db.add(AcademicRecord(
            student_id=student.id, subject_id=subject.id, teacher_id=teacher.id,
            semester="1", academic_year=current_academic_year(today), final_score=55,
        ))
        statuses = ["present", "absent", "absent", "absent"] if index == 0 else ["present"]
        for offset, status in enumerate(statuses):
            db.add(StudentAttendance(student_id=student.id, date=today - timedelta(days=offset + 1), status=status))

    db.add_all([
        SchoolFinance(
            school_id=school.id, budget_year=str(today.year), period="Tahunan", budget_category="Operasional",
            budget_amount=100000000, used_amount=95000000, remaining_amount=5000000,
        ),
        Asset(school_id=school.id, asset_code="AST-1", asset_name="Meja Lab", asset_category="Mebel", condition="major_damage"),
        Report(school_id=school.id, report_type="dapodik", title="Laporan Dapodik", submission_date=today + timedelta(days=2)),
    ])
    await db.commit()


# Detection rules
def test_attendance_rule():
    healthy = snapshot(attendance=[{"name": "A", "present": 9, "total": 10, "rate": 90.0}])
    assert check_attendance(healthy) == []

    mixed = snapshot(attendance=[
        {"name": "A", "present": 10, "total": 10, "rate": 100.0},
        {"name": "B", "present": 6, "total": 10, "rate": 60.0},
    ])
    [warning] = check_attendance(mixed)
    assert warning.title == "Tingkat Kehadiran Siswa Menurun"
    assert warning.urgency_level.value == "high"
    assert warning.actual_value == 80.0
    assert warning.target_value == 85

    poor = snapshot(attendance=[{"name": "B", "present": 6, "total": 10, "rate": 60.0}])
    assert check_attendance(poor)[0].urgency_level.value == "critical"


def test_academic_rule():
    warnings = check_academic(snapshot(subjects=[
        {"subject": "Fisika", "average": 55.0, "count": 30},
        {"subject": "Kimia", "average": 65.0, "count": 30},
        {"subject": "Biologi", "average": 72.0, "count": 30},
        {"subject": "Seni", "average": 40.0, "count": 4},
    ]))

    assert [(w.title, w.urgency_level.value) for w in warnings] == [
        ("Nilai Fisika Rendah", "critical"),
        ("Nilai Kimia Rendah", "medium"),
    ]


def test_financial_rule():
    warnings = check_financial(snapshot(budgets=[
        {"category": "Operasional", "budget_amount": 100.0, "remaining_amount": 15.0},
        {"category": "Sarana", "budget_amount": 100.0, "remaining_amount": 5.0},
        {"category": "Kegiatan", "budget_amount": 100.0, "remaining_amount": 30.0},
        {"category": "Kosong", "budget_amount": 0.0, "remaining_amount": 0.0},
    ]))

    assert [(w.title, w.urgency_level.value, w.actual_value) for w in warnings] == [
        ("Anggaran Operasional Menipis", "high", 15.0),
        ("Anggaran Sarana Menipis", "critical", 5.0),
    ]


def test_asset_rule():
    two = snapshot(damaged_assets=[{"asset_id": i} for i in range(2)])
    six = snapshot(damaged_assets=[{"asset_id": i} for i in range(6)])

    assert check_assets(snapshot()) == []
    assert check_assets(two)[0].urgency_level.value == "medium"
    assert check_assets(six)[0].urgency_level.value == "high"
    assert check_assets(six)[0].actual_value == 6


def test_teacher_rule():
    one = snapshot(unevaluated_teachers=[{"teacher_id": 1}])
    four = snapshot(unevaluated_teachers=[{"teacher_id": i} for i in range(4)])

    assert check_teachers(one)[0].urgency_level.value == "low"
    assert check_teachers(four)[0].urgency_level.value == "medium"


def test_deadline_rule():
    near = snapshot(due_reports=[{"report_id": 1, "days_left": 6}, {"report_id": 2, "days_left": 2}])
    later = snapshot(due_reports=[{"report_id": 1, "days_left": 5}])

    assert check_deadlines(near)[0].urgency_level.value == "critical"
    assert check_deadlines(near)[0].actual_value == 2
    assert check_deadlines(later)[0].urgency_level.value == "medium"


# Analysis
async def test_analyze_detects_every_category(db, school):
    await seed_school(db, school, TODAY)

    result = await EarlyWarningService().analyze(db, school.id, today=TODAY)

    assert result.success is True
    assert result.metadata["data_quality"] == 1.0
    assert result.metadata["ai_enabled"] is False
    assert [w.category.value for w in result.warnings] == [
        "attendance", "academic", "financial", "deadline", "asset", "teacher",
    ]
    assert result.summary["total_warnings"] == 6
    assert result.summary["critical_warnings"] == 4
    assert result.summary["warnings_by_category"]["deadline"] == 1
    assert all(w.recommended_actions is None for w in result.warnings)


async def test_analyze_aborts_on_thin_data(db, school):
    result = await EarlyWarningService().analyze(db, school.id, today=TODAY)

    assert result.success is False
    assert result.errors == ["Data quality too low for reliable analysis"]


class UnreachableDatabaseWarnings(EarlyWarningService):
    async def gather(self, db, school_id, today=None):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))


async def test_analyze_reports_gather_failure(db, school):
    result = await UnreachableDatabaseWarnings().analyze(db, school.id, today=TODAY)

    assert result.success is False
    assert result.warnings == []
    assert result.errors == ["Failed to gather school data for analysis"]


async def test_model_suggests_actions(db, school):
    await seed_school(db, school, TODAY)
    gateway = make_gateway(lambda request: gemini_json(ACTIONS))

    result = await EarlyWarningService(gateway).analyze(db, school.id, today=TODAY)

    assert result.metadata["ai_enabled"] is True
    for warning in result.warnings:
        assert warning.recommended_actions == ["Langkah 1", "Langkah 2", "Langkah 3", "Langkah 4", "Langkah 5"]


async def test_model_failure_keeps_warnings(db, school):
    await seed_school(db, school, TODAY)
    gateway = make_gateway(lambda request: httpx.Response(500, json={}), AI_RETRY_ATTEMPTS=1)

    result = await EarlyWarningService(gateway).analyze(db, school.id, today=TODAY)

    assert result.success is True
    assert len(result.warnings) == 6
    assert result.errors == []
    assert all(w.recommended_actions is None for w in result.warnings)


# Storage and API
async def test_generate_save_and_resolve(client, db, school, auth_headers):
    await seed_school(db, school, date.today())
    app.dependency_overrides[get_ai_gateway] = lambda: make_gateway(lambda request: gemini_json(ACTIONS))

    response = await client.post("/api/early-warnings/generate", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["summary"]["total_warnings"] == 6
    assert data["save_result"]["saved"] == 6

    response = await client.post("/api/early-warnings/generate", headers=auth_headers)
    assert response.json()["data"]["save_result"]["skipped"] == 6

    response = await client.get("/api/early-warnings", headers=auth_headers)
    body = response.json()
    items = body["data"]["items"]
    assert len(items) == 6
    assert items[0]["urgency_level"] == "critical"
    assert items[-1]["urgency_level"] == "low"
    assert body["stats"]["unresolved"] == 6
    assert body["stats"]["critical"] == 4

    warning_id = items[0]["id"]
    response = await client.put(f"/api/early-warnings/{warning_id}/resolve", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["is_resolved"] is True
    assert response.json()["data"]["resolved_at"] is not None

    response = await client.put(f"/api/early-warnings/{warning_id}/resolve", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Peringatan sudah ditandai selesai"

    response = await client.get("/api/early-warnings/stats", headers=auth_headers)
    stats = response.json()["data"]
    assert (stats["resolved"], stats["unresolved"], stats["critical"]) == (1, 5, 3)

    response = await client.get("/api/early-warnings", params={"resolved": False}, headers=auth_headers)
    assert response.json()["data"]["pagination"]["total"] == 5


async def test_resolve_unknown_warning(client, auth_headers):
    response = await client.put("/api/early-warnings/999/resolve", headers=auth_headers)

    assert response.status_code == 404


async def test_teacher_cannot_generate(client, teacher_headers):
    response = await client.post("/api/early-warnings/generate", headers=teacher_headers)

    assert response.status_code == 403
