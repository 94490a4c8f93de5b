"""
Test configuration and fixtures.
Uses a fresh SQLite database (aiosqlite) per test and httpx.MockTransport
stand-ins for the FLUX, Backblaze B2 and source-image hosts.
"""
import json
import os
import uuid as uuid_module
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

# Set test environment before any imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./pawstudio_test.db"
os.environ["ENVIRONMENT"] = "test"
os.environ["BFL_API_KEY"] = "test-bfl-key"
os.environ["B2_APPLICATION_KEY_ID"] = "test-key-id"
os.environ["B2_APPLICATION_KEY"] = "test-app-key"
os.environ["B2_BUCKET_ID"] = "test-bucket-id"
os.environ["B2_BUCKET_NAME"] = "pawstudio"
os.environ["CDN_URL"] = "https://cdn.paw-studio.com"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_123"
os.environ["REVENUECAT_WEBHOOK_SECRET"] = "rc-secret"

import pytest
from typing import AsyncGenerator, List, Optional

import httpx
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from pawstudio.models.base import Base
from pawstudio.models.auth_session import AuthSession
from pawstudio.models.scene import Scene
from pawstudio.models.user import User
from pawstudio.services.flux_client import FluxClient
from pawstudio.services.generation_service import GenerationService
from pawstudio.storage.b2_client import B2Client


SOURCE_IMAGE_URL = "https://images.example.com/pets/rex.jpg"
SOURCE_IMAGE_BYTES = b"\xff\xd8\xff\xe0source-jpeg"
GENERATED_IMAGE_BYTES = b"\xff\xd8\xff\xe0generated-jpeg"
POLLING_URL = "https://api.bfl.ai/v1/get_result?id=task-123"
SAMPLE_URL = "https://delivery.bfl.ai/results/sample.jpg"


class ExternalAPIStub:
    """
    One MockTransport handler for every outbound host used by the app.

    `flux_statuses` is consumed one entry per poll; the last entry repeats.
    """

    def __init__(self):
        self.flux_statuses: List[str] = ["Pending", "Ready"]
        self.flux_submit_status = 200
        self.submissions: List[dict] = []
        self.polls = 0
        self.uploads: dict = {}
        self.deleted: List[str] = []
        self.upload_status = 200
        self.delete_status = 200

    def handle(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        path = request.url.path

        if host == "api.bfl.ai" and request.method == "POST":
            self.submissions.append({"headers": dict(request.headers), "json": json.loads(request.content)})
            if self.flux_submit_status != 200:
                return httpx.Response(self.flux_submit_status, text="upstream error")
            return httpx.Response(200, json={"id": "task-123", "polling_url": POLLING_URL})

        if host == "api.bfl.ai" and path == "/v1/get_result":
            self.polls += 1
            index = min(self.polls, len(self.flux_statuses)) - 1
            status = self.flux_statuses[index]
            body = {"id": "task-123", "status": status}
            if status == "Ready":
                body["result"] = {"sample": SAMPLE_URL}
            return httpx.Response(200, json=body)

        if host == "delivery.bfl.ai":
            return httpx.Response(200, content=GENERATED_IMAGE_BYTES, headers={"content-type": "image/jpeg"})

        if host == "images.example.com":
            if path.startswith("/missing"):
                return httpx.Response(404)
            return httpx.Response(200, content=SOURCE_IMAGE_BYTES, headers={"content-type": "image/jpeg"})

        if host == "cdn.paw-studio.com":
            stored = self.uploads.get(path.lstrip("/"))
            if stored is None:
                return httpx.Response(404)
            return httpx.Response(
                200,
                content=stored.get("content", b""),
                headers={"content-type": stored.get("content_type", "image/jpeg")},
            )

        if path.endswith("/b2_authorize_account"):
            return httpx.Response(200, json={
                "authorizationToken": "b2-account-token",
                "apiUrl": "https://api005.backblazeb2.com",
                "downloadUrl": "https://f005.backblazeb2.com",
            })

        if path.endswith("/b2_get_upload_url"):
            return httpx.Response(200, json={
                "uploadUrl": "https://pod-000.backblazeb2.com/b2api/v2/b2_upload_file/test-bucket-id",
                "authorizationToken": "b2-upload-token",
            })

        if path.startswith("/b2api/v2/b2_upload_file"):
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, text="upload failed")
            file_name = request.headers["X-Bz-File-Name"]
            self.uploads[file_name] = {
                "content": request.content,
                "sha1": request.headers["X-Bz-Content-Sha1"],
                "content_type": request.headers["Content-Type"],
            }
            return httpx.Response(200, json={"fileId": f"id-{file_name}", "fileName": file_name})

        if path.endswith("/b2_list_file_names"):
            wanted = json.loads(request.content)["prefix"]
            files = [{"fileId": f"id-{wanted}", "fileName": wanted}] if wanted in self.uploads else []
            return httpx.Response(200, json={"files": files})

        if path.endswith("/b2_delete_file_version"):
            file_name = json.loads(request.content)["fileName"]
            if self.delete_status != 200:
                return httpx.Response(self.delete_status, text="delete failed")
            self.uploads.pop(file_name, None)
            self.deleted.append(file_name)
            return httpx.Response(200, json={"fileName": file_name})

        return httpx.Response(404, text=f"unexpected request {request.method} {request.url}")


@pytest.fixture(scope="function")
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with session_maker() as session:
        yield session

    await engine.dispose()


async def _create_user(db: AsyncSession, email: str, credits: int, trial_mode: bool, role: str = "user") -> User:
    user = User(
        id=str(uuid_module.uuid4()),
        email=email,
        name=email.split("@")[0],
        credits=credits,
        trial_mode=trial_mode,
        role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture(scope="function")
async def test_user(db_session: AsyncSession) -> User:
    """Paying user with 10 credits, trial already completed."""
    return await _create_user(db_session, "test@example.com", credits=10, trial_mode=False)


@pytest.fixture(scope="function")
async def trial_user(db_session: AsyncSession) -> User:
    """New user with no credits, still in trial mode."""
    return await _create_user(db_session, "trial@example.com", credits=0, trial_mode=True)


@pytest.fixture(scope="function")
async def broke_user(db_session: AsyncSession) -> User:
    """User with no credits and no trial left."""
    return await _create_user(db_session, "broke@example.com", credits=0, trial_mode=False)


@pytest.fixture(scope="function")
async def admin_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "admin@example.com", credits=0, trial_mode=False, role="admin")


@pytest.fixture(scope="function")
async def test_scene(db_session: AsyncSession) -> Scene:
    scene = Scene(
        name="Studio Portrait",
        description="Black and white studio portrait",
        prompt="Black and white professional studio portrait of a dog",
        category="classic",
        credit_cost=1,
        display_order=1,
    )
    db_session.add(scene)
    await db_session.commit()
    await db_session.refresh(scene)
    return scene


@pytest.fixture(scope="function")
async def auth_session(db_session: AsyncSession, test_user: User) -> AuthSession:
    """Unexpired session token for test_user."""
    session = AuthSession(
        token=f"token-{uuid_module.uuid4().hex}",
        user_id=test_user.id,
        expires_at=datetime.utcnow() + timedelta(days=7),
    )
    db_session.add(session)
    await db_session.commit()
    return session


@pytest.fixture
def external_api() -> ExternalAPIStub:
    return ExternalAPIStub()


@pytest.fixture
def mock_transport(external_api: ExternalAPIStub) -> httpx.MockTransport:
    return httpx.MockTransport(external_api.handle)


@pytest.fixture
def flux_client(mock_transport: httpx.MockTransport) -> FluxClient:
    return FluxClient(
        api_key="test-bfl-key",
        base_url="https://api.bfl.ai",
        poll_interval=0,
        max_attempts=30,
        transport=mock_transport,
    )


@pytest.fixture
def b2_client(mock_transport: httpx.MockTransport) -> B2Client:
    return B2Client(
        key_id="test-key-id",
        application_key="test-app-key",
        bucket_id="test-bucket-id",
        bucket_name="pawstudio",
        cdn_url="https://cdn.paw-studio.com",
        api_url="https://api.backblazeb2.com",
        transport=mock_transport,
    )


@pytest.fixture
def generation_service(flux_client: FluxClient, b2_client: B2Client, mock_transport: httpx.MockTransport) -> GenerationService:
    return GenerationService(flux=flux_client, storage=b2_client, transport=mock_transport)


def get_test_app(
    db_session: AsyncSession,
    current_user: Optional[User],
    b2_client: B2Client,
    generation_service: GenerationService,
) -> FastAPI:
    """Create a test FastAPI app with overridden dependencies."""
    from pawstudio.main import app
    from pawstudio.database import get_db
    from pawstudio.auth.dependencies import get_current_user
    from pawstudio.services.generation_service import get_generation_service
    from pawstudio.storage.b2_client import get_b2_client

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_b2_client] = lambda: b2_client
    app.dependency_overrides[get_generation_service] = lambda: generation_service

    if current_user is not None:
        async def override_get_current_user():
            return current_user

        app.dependency_overrides[get_current_user] = override_get_current_user

    return app


@asynccontextmanager
async def _client_for(app: FastAPI):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def client(db_session, test_user, b2_client, generation_service) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated as test_user."""
    app = get_test_app(db_session, test_user, b2_client, generation_service)
    async with _client_for(app) as ac:
        yield ac


@pytest.fixture(scope="function")
async def trial_client(db_session, trial_user, b2_client, generation_service) -> AsyncGenerator[AsyncClient, None]:
    app = get_test_app(db_session, trial_user, b2_client, generation_service)
    async with _client_for(app) as ac:
        yield ac


@pytest.fixture(scope="function")
async def broke_client(db_session, broke_user, b2_client, generation_service) -> AsyncGenerator[AsyncClient, None]:
    app = get_test_app(db_session, broke_user, b2_client, generation_service)
    async with _client_for(app) as ac:
        yield ac


@pytest.fixture(scope="function")
async def admin_client(db_session, admin_user, b2_client, generation_service) -> AsyncGenerator[AsyncClient, None]:
    app = get_test_app(db_session, admin_user, b2_client, generation_service)
    async with _client_for(app) as ac:
        yield ac


@pytest.fixture(scope="function")
async def anon_client(db_session, b2_client, generation_service) -> AsyncGenerator[AsyncClient, None]:
    """Client without a user override: authentication runs for real."""
    app = get_test_app(db_session, None, b2_client, generation_service)
    async with _client_for(app) as ac:
        yield ac
