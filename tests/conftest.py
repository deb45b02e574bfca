import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from contact_segments.main import app
from contact_segments.database import Base, build_engine, get_db
from contact_segments.api.deps import create_access_token
from contact_segments.models import Organization, Contact

from tests.factories import ContactFactory

# In-memory SQLite shared through one connection
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def test_db():
    """Create a fresh in-memory test database with all tables."""
    engine = build_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def org_a(test_db: AsyncSession) -> Organization:
    org = Organization(name="Org A")
    test_db.add(org)
    await test_db.commit()
    await test_db.refresh(org)
    return org


@pytest_asyncio.fixture
async def org_b(test_db: AsyncSession) -> Organization:
    org = Organization(name="Org B")
    test_db.add(org)
    await test_db.commit()
    await test_db.refresh(org)
    return org


@pytest.fixture
def make_contacts(test_db: AsyncSession):
    """Insert contacts built by ContactFactory; keyword overrides per contact."""

    async def _make(organization: Organization, *overrides: dict) -> list[Contact]:
        contacts = [
            Contact(**ContactFactory(organization_id=organization.id, **attrs))
            for attrs in overrides
        ]
        test_db.add_all(contacts)
        await test_db.commit()
        for contact in contacts:
            await test_db.refresh(contact)
        return contacts

    return _make


def make_auth_headers(organization_id: int) -> dict:
    token = create_access_token({"sub": "1", "org_id": organization_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Bearer headers for a given organization id."""
    return make_auth_headers


@pytest_asyncio.fixture
async def client(test_db: AsyncSession):
    """Create test client with overridden database."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
