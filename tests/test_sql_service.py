"""
SQL service tests.

Runs against a real SQLite database file through aiosqlite.
"""

import logging
import re
from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from dbservice import (
    ConnectionState, InstantiationFailedError, InvalidCriteriaError, InvalidSchemaError,
    ModelNotFoundError, NotConnectedError, SQLDBService
)

BOOK_SCHEMA = [
    {"name": "book", "schemaDefinition": {"title": str, "price": float}},
]

PRICES = {"Anathem": 5, "Beloved": 10, "Carrie": 50, "Dune": 100, "Emma": 150}


def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'library.db'}"


@pytest_asyncio.fixture
async def sql_service(test_config, test_logger, tmp_path):
    service = SQLDBService(test_config)
    await service.connect(test_logger, sqlite_url(tmp_path), BOOK_SCHEMA)
    yield service
    await service.disconnect()


@pytest_asyncio.fixture
async def library(sql_service):
    for title, price in PRICES.items():
        await sql_service.create("book", {"title": title, "price": price})
    return sql_service


def titles(records):
    return [record.get("title") for record in records]


class TestSQLConnect:
    """Table creation and connection retry"""

    @pytest.mark.asyncio
    async def test_tables_are_created(self, sql_service, log_records):
        assert sql_service.connection.entity_types == ["book"]
        model = sql_service.connection.get_model("book")
        assert list(model.table.columns.keys()) == ["id", "title", "price", "created_at", "updated_at"]
        assert log_records(logging.DEBUG, "Synchronized 1 SQL tables")
        assert log_records(logging.INFO, "SQL database connected")

    @pytest.mark.asyncio
    async def test_connect_retries_until_engine_available(self, test_config, test_logger, tmp_path, log_records):
        calls = []

        def flaky_engine(url, **kwargs):
            calls.append(url)
            if len(calls) <= 2:
                raise OSError("database unavailable")
            return create_async_engine(url, **kwargs)

        service = SQLDBService(test_config, engine_factory=flaky_engine)
        await service.connect(test_logger, sqlite_url(tmp_path), BOOK_SCHEMA)

        assert service.connection.is_connected
        assert len(calls) == 3
        errors = log_records(logging.ERROR)
        assert [r.getMessage() for r in errors] == ["Failed to connect to SQL - database unavailable"] * 2
        await service.disconnect()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("definition", [
        {"id": int},
        {"created_at": datetime},
        {"title": "varchar-ish"},
        {"title": {"type": str, "length": 10}},
        {"title": {"nullable": False}},
    ])
    async def test_invalid_schema_fails_before_connecting(self, test_config, test_logger, tmp_path, definition):
        calls = []

        def engine_factory(url, **kwargs):
            calls.append(url)
            return create_async_engine(url, **kwargs)

        service = SQLDBService(test_config, engine_factory=engine_factory)
        with pytest.raises(InvalidSchemaError):
            await service.connect(test_logger, sqlite_url(tmp_path), [{"name": "book", "schemaDefinition": definition}])

        assert calls == []
        assert service.connection.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_column_options(self, test_config, test_logger, tmp_path):
        service = SQLDBService(test_config)
        await service.connect(test_logger, sqlite_url(tmp_path), [
            {"name": "author", "schemaDefinition": {
                "name": {"type": "string", "required": True, "unique": True},
                "born": {"type": int, "default": 1900},
            }}
        ])

        author = await service.create("author", {"name": "Austen"})
        assert author.get("born") == 1900
        with pytest.raises(InstantiationFailedError):
            await service.create("author", {"name": "Austen"})
        await service.disconnect()

    @pytest.mark.asyncio
    async def test_timestamp_names_are_free_without_timestamps(self, test_config, test_logger, tmp_path):
        test_config.sql.timestamps = False
        service = SQLDBService(test_config)
        await service.connect(test_logger, sqlite_url(tmp_path), [
            {"name": "event", "schemaDefinition": {"title": str, "created_at": datetime}}
        ])

        model = service.connection.get_model("event")
        assert list(model.table.columns.keys()) == ["id", "title", "created_at"]
        event = await service.create("event", {"title": "launch", "created_at": datetime(2020, 1, 1)})
        found = await service.fetch("event", "id", event.id)
        assert found.get("created_at") == datetime(2020, 1, 1)
        await service.disconnect()


class TestSQLEntities:
    """Create, save, fetch and remove"""

    @pytest.mark.asyncio
    async def test_create_persists_immediately(self, sql_service):
        book = await sql_service.create("book", {"title": "Dune", "price": 9.5})

        assert book.id is not None
        assert book.get("created_at") is not None
        assert sql_service.creates_persisted is True
        found = await sql_service.fetch("book", "id", book.id)
        assert found.get("title") == "Dune"

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_fields(self, sql_service):
        with pytest.raises(InstantiationFailedError):
            await sql_service.create("book", {"title": "Dune", "isbn": "978-0441013593"})

    @pytest.mark.asyncio
    async def test_create_unknown_type(self, sql_service):
        with pytest.raises(ModelNotFoundError):
            await sql_service.create("author", {})

    @pytest.mark.asyncio
    async def test_save_updates_row(self, sql_service):
        book = await sql_service.create("book", {"title": "Dune", "price": 9.5})
        sql_service.set_prop(book, "price", 12.0)

        assert await sql_service.save(book) is True

        found = await sql_service.fetch("book", "id", book.id)
        assert sql_service.get_prop(found, "price") == 12.0

    @pytest.mark.asyncio
    async def test_fetch_by_property(self, library):
        found = await library.fetch("book", "title", "Emma")

        assert found.get("price") == 150
        assert await library.fetch("book", "title", "Ulysses") is None
        assert await library.fetch("book", "id", 999) is None

    @pytest.mark.asyncio
    async def test_unknown_fields_are_rejected(self, library):
        with pytest.raises(InvalidCriteriaError):
            await library.fetch("book", "isbn", "978-0441013593")
        with pytest.raises(InvalidCriteriaError):
            await library.fetch_all("book", "isbn", "978-0441013593")
        with pytest.raises(InvalidCriteriaError):
            await library.find_all("book", {"isbn": "978-0441013593"})
        with pytest.raises(InvalidCriteriaError):
            await library.find_all("book", sort={"isbn": 1})

    @pytest.mark.asyncio
    async def test_fetch_all(self, library):
        assert len(await library.fetch_all("book")) == 5
        assert titles(await library.fetch_all("book", "price", 50)) == ["Carrie"]

    @pytest.mark.asyncio
    async def test_remove(self, library):
        book = await library.fetch("book", "title", "Dune")

        assert await library.remove(book) is True

        assert await library.fetch("book", "title", "Dune") is None
        assert len(await library.fetch_all("book")) == 4

    @pytest.mark.asyncio
    async def test_to_dict(self, sql_service):
        book = await sql_service.create("book", {"title": "Dune", "price": 9.5})

        data = book.to_dict()
        assert data["id"] == book.id
        assert data["title"] == "Dune"
        assert set(data) == {"id", "title", "price", "created_at", "updated_at"}

    @pytest.mark.asyncio
    async def test_operations_after_disconnect(self, sql_service):
        book = await sql_service.create("book", {"title": "Dune"})
        await sql_service.disconnect()

        with pytest.raises(NotConnectedError):
            await sql_service.save(book)
        with pytest.raises(NotConnectedError):
            await sql_service.remove(book)
        with pytest.raises(NotConnectedError):
            await sql_service.find_all("book")

    @pytest.mark.asyncio
    async def test_operations_before_connect(self, test_config):
        service = SQLDBService(test_config)

        with pytest.raises(NotConnectedError):
            await service.fetch("book", "id", 1)


class TestSQLFindAll:
    """WHERE / ORDER BY / OFFSET / LIMIT against real rows"""

    @pytest.mark.asyncio
    async def test_range_with_both_bounds_is_inclusive(self, library, log_records):
        found = await library.find_all("book", {"price": {"gt": 10, "lt": 100}})

        assert sorted(titles(found)) == ["Beloved", "Carrie", "Dune"]
        assert library.range_bounds_inclusive is True
        (search_line,) = log_records(logging.DEBUG, "SQLDBService find_all")
        assert "book.price BETWEEN" in search_line.getMessage()

    @pytest.mark.asyncio
    async def test_pattern_matches_with_regexp(self, library):
        assert titles(await library.find_all("book", {"title": re.compile("^Du")})) == ["Dune"]
        assert sorted(titles(await library.find_all("book", {"title": re.compile("e$")}))) == ["Carrie", "Dune"]

    @pytest.mark.asyncio
    async def test_single_bound_is_strict(self, library):
        assert sorted(titles(await library.find_all("book", {"price": {"gt": 50}}))) == ["Dune", "Emma"]
        assert sorted(titles(await library.find_all("book", {"price": {"lt": 10}}))) == ["Anathem"]

    @pytest.mark.asyncio
    async def test_zero_bounds_match_everything(self, library):
        assert len(await library.find_all("book", {"price": {"gt": 0, "lt": 0}})) == 5

    @pytest.mark.asyncio
    async def test_all_undefined_criteria_match_everything(self, library):
        assert len(await library.find_all("book", {"title": None, "price": None})) == 5

    @pytest.mark.asyncio
    async def test_scalar_criteria_are_combined(self, library):
        assert titles(await library.find_all("book", {"title": "Dune", "price": 100})) == ["Dune"]
        assert await library.find_all("book", {"title": "Dune", "price": 5}) == []

    @pytest.mark.asyncio
    async def test_sort_start_and_limit(self, library, log_records):
        found = await library.find_all("book", sort={"price": -1}, start=1, limit=2)

        assert titles(found) == ["Dune", "Carrie"]
        assert len(log_records(logging.DEBUG, "SQLDBService find_all")) == 4

    @pytest.mark.asyncio
    async def test_only_first_sort_entry_applies(self, library):
        found = await library.find_all("book", sort={"title": 1, "price": -1})

        assert titles(found) == sorted(PRICES)
        assert library.supports_compound_sort is False

    @pytest.mark.asyncio
    async def test_no_modifiers_logs_search_only(self, library, log_records):
        await library.find_all("book")

        debug_lines = log_records(logging.DEBUG, "SQLDBService find_all")
        assert [r.getMessage() for r in debug_lines] == [
            "SQLDBService find_all - Performing search for - []"
        ]
