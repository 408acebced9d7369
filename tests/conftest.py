"""
Shared fixtures for dbservice tests.

MongoDB is replaced by an in-memory client double; SQL tests run against a
real SQLite database through aiosqlite.
"""

import logging
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from dbservice import Environment, ServiceConfig

LOGGER_NAME = "tests.dbservice"


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        if isinstance(expected, dict):
            # operator queries are asserted on, not evaluated
            continue
        if document.get(key) != expected:
            return False
    return True


class FakeCursor:
    """Chainable cursor that records modifiers"""

    def __init__(self, documents: List[Dict[str, Any]]):
        self.documents = documents
        self.calls: List[tuple] = []

    def sort(self, keys):
        self.calls.append(("sort", keys))
        return self

    def skip(self, count):
        self.calls.append(("skip", count))
        return self

    def limit(self, count):
        self.calls.append(("limit", count))
        return self

    async def to_list(self, length=None):
        self.calls.append(("to_list", length))
        return [dict(document) for document in self.documents]


class FakeCollection:
    """In-memory collection recording every query it receives"""

    def __init__(self, name: str):
        self.name = name
        self.documents: List[Dict[str, Any]] = []
        self.queries: List[Dict[str, Any]] = []
        self.cursors: List[FakeCursor] = []
        self.fail_writes = False

    def _check_writes(self):
        if self.fail_writes:
            raise PyMongoError("write rejected")

    def find(self, query: Optional[Dict[str, Any]] = None) -> FakeCursor:
        query = query or {}
        self.queries.append(query)
        cursor = FakeCursor([d for d in self.documents if _matches(d, query)])
        self.cursors.append(cursor)
        return cursor

    async def find_one(self, query: Dict[str, Any]):
        self.queries.append(query)
        for document in self.documents:
            if _matches(document, query):
                return dict(document)
        return None

    async def insert_one(self, document: Dict[str, Any]):
        self._check_writes()
        object_id = ObjectId()
        self.documents.append({"_id": object_id, **document})
        return SimpleNamespace(inserted_id=object_id)

    async def replace_one(self, query: Dict[str, Any], document: Dict[str, Any], upsert: bool = False):
        self._check_writes()
        self.documents = [d for d in self.documents if not _matches(d, query)]
        self.documents.append({**query, **document})
        return SimpleNamespace(modified_count=1)

    async def delete_one(self, query: Dict[str, Any]):
        self._check_writes()
        before = len(self.documents)
        self.documents = [d for d in self.documents if not _matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.documents))


class FakeDatabase:
    def __init__(self, name: str):
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(name))


class FakeMongoClient:
    def __init__(self, uri: str, failures: int = 0, **kwargs):
        self.uri = uri
        self.kwargs = kwargs
        self.database: Optional[FakeDatabase] = None
        self.admin = SimpleNamespace(command=AsyncMock())
        if failures:
            self.admin.command.side_effect = ServerSelectionTimeoutError("no servers available")
        self.close = AsyncMock()

    def get_default_database(self, default: str) -> FakeDatabase:
        self.database = FakeDatabase(default)
        return self.database


class FakeMongo:
    """
    Client factory double.

    The first ``failures`` clients fail their ping, later ones connect.
    """

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.clients: List[FakeMongoClient] = []

    def __call__(self, uri: str, **kwargs) -> FakeMongoClient:
        failing = len(self.clients) < self.failures
        client = FakeMongoClient(uri, failures=int(failing), **kwargs)
        self.clients.append(client)
        return client

    @property
    def client(self) -> FakeMongoClient:
        return self.clients[-1]

    def collection(self, name: str) -> FakeCollection:
        return self.client.database[name]


@pytest.fixture
def test_logger(caplog) -> logging.Logger:
    caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
    return logging.getLogger(LOGGER_NAME)


@pytest.fixture
def test_config() -> ServiceConfig:
    return ServiceConfig.for_environment(Environment.TESTING)


@pytest.fixture
def fake_mongo() -> FakeMongo:
    return FakeMongo()


@pytest.fixture
def flaky_mongo() -> FakeMongo:
    """Client factory whose first two clients cannot reach a server"""
    return FakeMongo(failures=2)


@pytest.fixture
def log_records(caplog):
    """Captured records from the test logger at one level"""
    def _records(level: int, contains: str = "") -> List[logging.LogRecord]:
        return [
            record for record in caplog.records
            if record.name == LOGGER_NAME and record.levelno == level
            and contains in record.getMessage()
        ]
    return _records
