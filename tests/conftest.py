"""
Pytest configuration and shared fixtures.
"""

import copy
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from api.database import APIDatabaseService, get_db_service
from api.main import app


def make_cursor(docs=None):
    """Build a motor-like cursor: chainable sort/skip/limit, async to_list and iteration."""
    docs = list(docs or [])
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    cursor.__aiter__.return_value = docs
    return cursor


class InMemorySessionStore:
    """Session store used in place of the MongoDB-backed one."""

    def __init__(self):
        self.sessions = {}

    async def load(self, session_id):
        data = self.sessions.get(session_id)
        return copy.deepcopy(data) if data is not None else None

    async def save(self, session_id, data):
        self.sessions[session_id] = copy.deepcopy(data)

    async def delete(self, session_id):
        self.sessions.pop(session_id, None)


@pytest.fixture
def mock_database():
    """Create a mock motor database with books, authors, users and sessions collections."""
    database = MagicMock()
    database.command = AsyncMock(return_value={"ok": 1.0})
    for name in ("books", "authors", "users", "sessions"):
        collection = AsyncMock()
        collection.find = MagicMock(return_value=make_cursor())
        collection.aggregate = MagicMock(return_value=make_cursor())
        collection.update_one.return_value = MagicMock(modified_count=1)
        setattr(database, name, collection)
    return database


@pytest.fixture
def db_service(mock_database):
    return APIDatabaseService(mock_database)


@pytest.fixture
def author_id():
    return ObjectId("64b7f0c2a1b2c3d4e5f60718")


@pytest.fixture
def other_author_id():
    return ObjectId("64b7f0c2a1b2c3d4e5f60719")


@pytest.fixture
def author_doc(author_id):
    """Stored author document."""
    return {
        "_id": author_id,
        "firstName": "F. Scott",
        "lastName": "Fitzgerald",
        "nationality": "American",
        "birthDate": datetime(1896, 9, 24),
        "deathDate": datetime(1940, 12, 21),
        "genres": ["Fiction"],
        "awards": [],
        "bookCount": 1,
        "createdAt": datetime(2024, 1, 15, 10, 30),
        "updatedAt": datetime(2024, 1, 15, 10, 30),
    }


@pytest.fixture
def book_payload(author_id):
    """Request body for creating a book."""
    return {
        "title": "The Great Gatsby",
        "author": str(author_id),
        "isbn": "978-0-74-327356-5",
        "genre": "Fiction",
        "publicationYear": 1925,
        "publisher": "Charles Scribner's Sons",
        "pageCount": 180,
        "language": "English",
        "description": "A novel about the American Dream during the Jazz Age",
        "availableCopies": 10,
    }


@pytest.fixture
def book_doc(author_id):
    """Stored book document."""
    return {
        "_id": ObjectId("65a1b2c3d4e5f60718293a4b"),
        "title": "The Great Gatsby",
        "author": author_id,
        "isbn": "9780743273565",
        "genre": "Fiction",
        "publicationYear": 1925,
        "publisher": "Charles Scribner's Sons",
        "pageCount": 180,
        "language": "English",
        "availableCopies": 10,
        "createdAt": datetime(2024, 1, 15, 10, 30),
        "updatedAt": datetime(2024, 1, 15, 10, 30),
    }


@pytest.fixture
def cursor_factory():
    return make_cursor


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def client(session_store):
    """Test client with an in-memory session store; lifespan (and MongoDB) is not started."""
    app.state.session_store = session_store
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.session_store = None


@pytest.fixture
def service_client(client, db_service):
    """Test client whose routes use the real service over the mock database."""
    app.dependency_overrides[get_db_service] = lambda: db_service
    return client
