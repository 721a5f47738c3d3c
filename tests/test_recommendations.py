import json
from datetime import date, datetime, timedelta

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from conftest import gemini_json, make_gateway
from schoolhub.api.deps import get_ai_gateway
from schoolhub.main import app
from schoolhub.models import Student, Teacher, Subject, AcademicRecord, StudentAttendance, AiRecommendation
from schoolhub.schemas.analysis import RecommendationDraft
from schoolhub.services.academic import current_academic_year, current_semester
from schoolhub.services.academic_analysis import AcademicAnalysisService, drafts_from_ai
from schoolhub.services.gemini import AIFailure, AIJsonResult, AIMetadata, AITextResult
from schoolhub.services.recommendations import RecommendationService, determine_urgency

pytestmark = pytest.mark.anyio

AI_ITEM = {
    "title": "Kelas remedial matematika",
    "description": "Adakan kelas remedial dua kali seminggu.",
    "predicted_impact": "Nilai rata-rata naik 10 poin",
    "urgency": "high",
}


async def seed_class(db, school, today, scores=(60, 65, 70, 80, 90)):
    """One grade X class with math scores in the current semester; the first student is often absent."""
    teacher = Teacher(school_id=school.id, employee_id="NIP-100", full_name="Rina Wulandari")
    subject = Subject(subject_code="MTK-X", subject_name="Matematika")
    db.add_all([teacher, subject])
    await db.flush()

    for index, score in enumerate(scores):
        student = Student(school_id=school.id, student_id=f"X-{index:03d}", full_name=f"Siswa {index}", grade="X")
        db.add(student)
        await db.flush()
        db.add(AcademicRecord(
            student_id=student.id,
            subject_id=subject.id,
            teacher_id=teacher.id,
            semester=current_semester(today),
            academic_year=current_academic_year(today),
            final_score=score,
        ))
        statuses = ["present", "present", "absent", "absent"] if index == 0 else ["present"]
        for offset, status in enumerate(statuses):
            db.add(StudentAttendance(student_id=student.id, date=today - timedelta(days=offset + 1), status=status))
    await db.commit()


def prompt_of(request: httpx.Request) -> str:
    return json.loads(request.content)["contents"][0]["parts"][0]["text"]


def draft(title, category="academic", urgency="medium"):
    return RecommendationDraft(category=category, title=title, description="Deskripsi", urgency_level=urgency)


def test_determine_urgency():
    assert determine_urgency(55, 95) == "critical"
    assert determine_urgency(90, 65) == "critical"
    assert determine_urgency(65) == "high"
    assert determine_urgency(attendance_rate=75) == "high"
    assert determine_urgency(72, 90) == "medium"
    assert determine_urgency(80, 95) == "low"
    assert determine_urgency() == "low"


def test_drafts_from_ai():
    metadata = AIMetadata(model="gemini-1.5-flash")
    result = AIJsonResult(
        data={"recommendations": [AI_ITEM, {"title": "Tanpa urgensi", "urgency": "segera"}, {"description": "tanpa judul"}]},
        confidence=0.876,
        metadata=metadata,
    )

    drafts = drafts_from_ai(result, "academic", "medium")

    assert [d.title for d in drafts] == ["Kelas remedial matematika", "Tanpa urgensi"]
    assert drafts[0].urgency_level.value == "high"
    assert drafts[1].urgency_level.value == "medium"
    assert drafts[1].description == "Tanpa urgensi"
    assert drafts[0].confidence_level == 0.88

    text = AITextResult(text="Tidak ada rekomendasi", confidence=0.5, metadata=metadata)
    assert drafts_from_ai(text, "academic", "low") == []

    with pytest.raises(Exception, match="Kuota API telah habis"):
        drafts_from_ai(AIFailure(error_code="AI_ERROR", error="Kuota API telah habis"), "academic", "low")


async def test_save_skips_recent_duplicates(db, school):
    service = RecommendationService()
    now = datetime(2025, 3, 1, 8, 0)

    first = await service.save_recommendations(db, school.id, [draft("Program literasi membaca pagi")], now=now)
    second = await service.save_recommendations(
        db,
        school.id,
        [
            draft("Program literasi membaca pagi hari"),
            draft("Program literasi membaca pagi", category="attendance"),
        ],
        now=now + timedelta(hours=2),
    )
    third = await service.save_recommendations(db, school.id, [draft("Program literasi membaca pagi")], now=now + timedelta(days=2))

    assert (first.saved, first.skipped) == (1, 0)
    assert (second.saved, second.skipped) == (1, 1)
    assert (third.saved, third.skipped) == (1, 0)
    assert first.success and second.success


async def test_duplicate_check_treats_wildcards_literally(db, school):
    service = RecommendationService()
    now = datetime(2025, 3, 1, 8, 0)
    await service.save_recommendations(db, school.id, [draft("Naikkan nilai 1005 siswa")], now=now)

    assert await service.find_recent_duplicate(db, school.id, "academic", "Naikkan nilai 1005 siswa", now) is not None
    assert await service.find_recent_duplicate(db, school.id, "academic", "Naikkan nilai 100% siswa", now) is None
    assert await service.find_recent_duplicate(db, school.id, "academic", "Naikkan_nilai 1005 siswa", now) is None


async def test_analysis_aborts_on_thin_data(db, school, gateway, gemini_requests):
    db.add(Student(school_id=school.id, student_id="S-1", full_name="Siswa Satu", grade="X"))
    await db.commit()

    result = await AcademicAnalysisService(gateway).analyze(db, school.id)

    assert result.success is False
    assert result.errors == ["Data quality too low for reliable analysis"]
    assert result.metadata["data_quality"] == 0.0
    assert gemini_requests == []


class UnreachableDatabaseAnalysis(AcademicAnalysisService):
    async def gather(self, db, school_id, today=None):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))


async def test_analysis_reports_gather_failure(db, school, gateway, gemini_requests):
    result = await UnreachableDatabaseAnalysis(gateway).analyze(db, school.id)

    assert result.success is False
    assert result.errors == ["Failed to gather school data for analysis"]
    assert result.recommendations == []
    assert gemini_requests == []


async def test_analysis_disabled(db, school):
    gateway = make_gateway(lambda request: gemini_json([]), AI_ANALYSIS_ENABLED=False)

    result = await AcademicAnalysisService(gateway).analyze(db, school.id)

    assert result.success is False
    assert result.errors == ["AI analysis is disabled"]


async def test_failed_subtask_does_not_stop_the_others(db, school):
    today = date(2024, 10, 15)
    await seed_class(db, school, today)

    def handler(request):
        if "pola kehadiran" in prompt_of(request):
            return httpx.Response(429, json={"error": {"message": "Resource has been exhausted (quota)"}})
        return gemini_json([AI_ITEM])

    service = AcademicAnalysisService(make_gateway(handler, AI_RETRY_ATTEMPTS=1))
    result = await service.analyze(db, school.id, today=today)

    assert result.success is True
    assert len(result.recommendations) == 3
    assert result.errors == ["attendance analysis failed: Kuota API telah habis"]
    assert result.metadata["academic_year"] == "2024/2025"
    assert result.metadata["semester"] == "1"
    assert result.metadata["data_quality"] >= 0.3
    assert result.summary["total_students_analyzed"] == 5
    assert result.summary["critical_subjects"] == ["Matematika"]
    assert result.summary["average_class_performance"] == 73.0


async def test_data_quality_weights(db, school, gateway):
    today = date(2024, 10, 15)
    await seed_class(db, school, today)
    service = AcademicAnalysisService(gateway)

    snapshot = await service.gather(db, school.id, today)

    assert len(snapshot.students) == 5
    assert snapshot.students[0].attendance_rate == 50.0
    assert service.data_quality(snapshot) == 0.8


async def test_generate_endpoint_saves_recommendations(client, db, school, auth_headers, gemini_requests):
    await seed_class(db, school, date.today())

    response = await client.post("/api/ai-recommendations/generate", json={}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data["recommendations"]) == 4
    assert data["save_result"]["saved"] == 2
    assert data["save_result"]["skipped"] == 2
    assert len(gemini_requests) == 4

    response = await client.get("/api/ai-recommendations", headers=auth_headers)
    body = response.json()
    assert body["data"]["pagination"]["total"] == 2
    assert body["stats"]["by_category"]["academic"] == 1
    assert body["stats"]["by_category"]["attendance"] == 1


async def test_generate_endpoint_reports_thin_data(client, auth_headers):
    response = await client.post("/api/ai-recommendations/generate", json={}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "ANALYSIS_UNAVAILABLE"


async def test_recommendation_review_flow(client, db, school, auth_headers):
    db.add(AiRecommendation(
        school_id=school.id,
        category="financial",
        title="Efisiensi anggaran listrik",
        description="Ganti lampu dengan LED.",
        confidence_level=0.8,
        urgency_level="medium",
    ))
    await db.commit()

    listing = await client.get("/api/ai-recommendations", headers=auth_headers)
    recommendation = listing.json()["data"]["items"][0]
    assert recommendation["icon"] == "TrendingUp"
    assert recommendation["implementation_status"] == "pending"

    response = await client.put(
        f"/api/ai-recommendations/{recommendation['id']}",
        json={"implementation_status": "approved", "principal_feedback": "Lanjutkan"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["principal_feedback"] == "Lanjutkan"

    response = await client.put(
        "/api/ai-recommendations/bulk-status",
        json={"ids": [recommendation["id"], 999], "implementation_status": "completed"},
        headers=auth_headers,
    )
    assert response.json()["data"]["updated"] == 1


async def test_ai_status_reports_quota(client, auth_headers):
    response = await client.get("/api/ai-recommendations/ai-status", headers=auth_headers)

    data = response.json()["data"]
    assert data["enabled"] is True
    assert data["model"] == "gemini-1.5-flash"
    assert data["stats"]["rate_limit_per_minute"] == 60
    assert "health" not in data


async def test_ai_status_with_live_check(client, auth_headers):
    app.dependency_overrides[get_ai_gateway] = lambda: make_gateway(
        lambda request: httpx.Response(500, json={}), AI_RETRY_ATTEMPTS=1
    )

    response = await client.get("/api/ai-recommendations/ai-status", params={"check": True}, headers=auth_headers)

    assert response.json()["data"]["health"]["status"] == "unhealthy"
