import pytest
from fastapi.testclient import TestClient

from app.core.auth import create_access_token
from app.db.session import get_database
from app.main import app
from app.models.member import membership_id
from app.services.balance_service import BalanceService
from app.services.settlement_service import SettlementService
from tests.fake_mongo import FakeDatabase

APARTMENT_ID = "apt-1"
MEMBERS = ["alice", "bob", "carol"]
OUTSIDER = "mallory"


def add_member(db, apartment_id: str, user_id: str, role: str = "member"):
    doc_id = membership_id(apartment_id, user_id)
    db["apartment_members"].docs[doc_id] = {
        "_id": doc_id,
        "apartment_id": apartment_id,
        "user_id": user_id,
        "role": role,
    }


@pytest.fixture
def test_db() -> FakeDatabase:
    """In-memory database with one apartment of three members."""
    db = FakeDatabase()
    for user_id in MEMBERS:
        add_member(db, APARTMENT_ID, user_id)
    return db


@pytest.fixture
def settlement_service(test_db) -> SettlementService:
    return SettlementService(test_db)


@pytest.fixture
def balance_service(test_db) -> BalanceService:
    return BalanceService(test_db)


@pytest.fixture
def test_client(test_db):
    """FastAPI test client wired to the in-memory database (no lifespan, no MongoDB)."""
    async def override_get_database():
        return test_db

    app.dependency_overrides[get_database] = override_get_database
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer headers for a given user id."""
    def _headers(user_id: str = "alice") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _headers
