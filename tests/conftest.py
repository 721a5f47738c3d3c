import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["GEMINI_API_KEY"] = "test-gemini-key"
os.environ["LOG_LEVEL"] = "WARNING"

import json
from typing import Any, Callable, List

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from schoolhub.api.deps import get_ai_gateway
from schoolhub.config import Settings
from schoolhub.database import get_db
from schoolhub.main import app
from schoolhub.models import Base, School, User
from schoolhub.services.auth import get_password_hash, create_access_token
from schoolhub.services.gemini import GeminiService

PASSWORD = "rahasia123"


@pytest.fixture
def anyio_backend():
    return "asyncio"


# Database
@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def school(db):
    school = School(npsn="20100001", school_name="SMA Negeri 1 Contoh", education_level="SMA")
    db.add(school)
    await db.commit()
    return school


@pytest.fixture
async def other_school(db):
    school = School(npsn="20100002", school_name="SMA Negeri 2 Contoh", education_level="SMA")
    db.add(school)
    await db.commit()
    return school


async def create_principal(db, school, username="kepsek"):
    user = User(
        username=username,
        email=f"{username}@sekolah.sch.id",
        full_name="Budi Santoso",
        hashed_password=get_password_hash(PASSWORD),
        role="principal",
    )
    db.add(user)
    await db.flush()
    school.principal_id = user.id
    await db.commit()
    return user


def token_for(user, school_id) -> str:
    return create_access_token({
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "school_id": school_id,
    })


@pytest.fixture
async def principal(db, school):
    return await create_principal(db, school)


@pytest.fixture
async def teacher_user(db, school):
    user = User(
        school_id=school.id,
        username="guru",
        email="guru@sekolah.sch.id",
        full_name="Siti Aminah",
        hashed_password=get_password_hash(PASSWORD),
        role="teacher",
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
def auth_headers(principal, school):
    return {"Authorization": f"Bearer {token_for(principal, school.id)}"}


@pytest.fixture
def teacher_headers(teacher_user, school):
    return {"Authorization": f"Bearer {token_for(teacher_user, school.id)}"}


# AI gateway
def build_settings(**overrides) -> Settings:
    values = {
        "GEMINI_API_KEY": "test-gemini-key",
        "AI_RETRY_ATTEMPTS": 3,
        "AI_RETRY_DELAY_MS": 10,
        "AI_REQUEST_TIMEOUT_MS": 1000,
        "AI_RATE_LIMIT_PER_MINUTE": 60,
    }
    values.update(overrides)
    return Settings(**values)


def gemini_response(text: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def gemini_json(data: Any) -> httpx.Response:
    return gemini_response(json.dumps(data))


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_gateway(handler: Callable, **overrides) -> GeminiService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiService(build_settings(**overrides), client=client, sleep=SleepRecorder())


@pytest.fixture
def gemini_requests():
    """Prompts sent to the fake Gemini endpoint."""
    return []


@pytest.fixture
def gateway(gemini_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        gemini_requests.append(payload["contents"][0]["parts"][0]["text"])
        return gemini_json([
            {
                "title": "Program remedial terstruktur",
                "description": "Berdasarkan analisis data nilai, adakan kelas remedial mingguan.",
                "predicted_impact": "Peningkatan rata-rata nilai 10 poin",
                "urgency": "high",
            }
        ])

    return make_gateway(handler)


# HTTP client
@pytest.fixture
async def client(session_factory, gateway):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
