"""
SQL Service - Relational Store Backend

🗃️ SQL Database Backend:
Data access service for any database SQLAlchemy can reach through an async
driver (``sqlite+aiosqlite``, ``postgresql+asyncpg``, ``mysql+aiomysql``...).
Entity schemas become tables with an autoincrement ``id`` primary key and
``created_at``/``updated_at`` timestamps, mapped imperatively onto generated
classes so no declarative models are needed up front.

Backend behaviour worth knowing:
- ``create`` inserts the row immediately
- ranges with both bounds translate to ``BETWEEN`` (inclusive)
- only the first entry of a sort specification is honoured
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Float, Integer, LargeBinary, MetaData,
    String, Table, Text, and_, asc, column, desc, select, text
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import registry
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.types import TypeEngine

from ...config import SQLConfig, ServiceConfig
from ..connection import ConnectionManager
from ..criteria import Range, SearchCriteria, SortSpecification, is_ascending, is_pattern, iter_criteria
from ..errors import (
    InstantiationFailedError, InvalidCriteriaError, InvalidSchemaError, PersistenceFailedError
)
from ..interface import DBService, EntityHandle, EntityValue, SchemaDescriptor

_PYTHON_TYPES: Dict[type, Any] = {
    str: String,
    int: Integer,
    float: Float,
    bool: Boolean,
    datetime: DateTime,
    date: Date,
    bytes: LargeBinary,
    dict: JSON,
    list: JSON,
}
_TYPE_NAMES: Dict[str, Any] = {
    "string": String,
    "text": Text,
    "integer": Integer,
    "number": Float,
    "float": Float,
    "boolean": Boolean,
    "date": DateTime,
    "datetime": DateTime,
    "json": JSON,
}
_COLUMN_OPTIONS = {"type", "nullable", "required", "default", "unique", "index"}
_TIMESTAMP_COLUMNS = {"created_at", "updated_at"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _column_type(name: str, definition: Any) -> Any:
    if isinstance(definition, TypeEngine):
        return definition
    if isinstance(definition, type) and issubclass(definition, TypeEngine):
        return definition
    if isinstance(definition, str) and definition.lower() in _TYPE_NAMES:
        return _TYPE_NAMES[definition.lower()]
    if isinstance(definition, type) and definition in _PYTHON_TYPES:
        return _PYTHON_TYPES[definition]
    raise InvalidSchemaError(f"Unsupported column type {definition!r} for field '{name}'")


def _build_column(name: str, definition: Any, reserved: Set[str]) -> Column:
    if name in reserved:
        raise InvalidSchemaError(f"Column name '{name}' is managed by the service")

    if not isinstance(definition, Mapping):
        return Column(name, _column_type(name, definition), nullable=True)

    unknown = set(definition) - _COLUMN_OPTIONS
    if unknown:
        raise InvalidSchemaError(f"Unsupported options {sorted(unknown)} for field '{name}'")
    if "type" not in definition:
        raise InvalidSchemaError(f"Missing column type for field '{name}'")

    options: Dict[str, Any] = {"nullable": definition.get("nullable", not definition.get("required", False))}
    for key in ("default", "unique", "index"):
        if key in definition:
            options[key] = definition[key]
    return Column(name, _column_type(name, definition["type"]), **options)


def build_columns(schema_definition: Mapping[str, Any], timestamps: bool = True) -> List[Column]:
    """Columns for an entity table: id, user fields, then timestamps"""
    columns = [Column("id", Integer, primary_key=True, autoincrement=True)]
    reserved = {"id", *_TIMESTAMP_COLUMNS} if timestamps else {"id"}
    columns.extend(
        _build_column(name, definition, reserved) for name, definition in schema_definition.items()
    )
    if timestamps:
        columns.append(Column("created_at", DateTime(timezone=True), default=_utcnow))
        columns.append(Column("updated_at", DateTime(timezone=True), default=_utcnow, onupdate=_utcnow))
    return columns


class SQLRow:
    """Base for generated entity classes; accepts only known columns"""

    __table__: Table

    def __init__(self, **values):
        known = set(self.__table__.columns.keys())
        unknown = set(values) - known
        if unknown:
            raise TypeError(f"Unknown fields for {self.__table__.name}: {sorted(unknown)}")
        for key, value in values.items():
            setattr(self, key, value)


@dataclass
class TableModel:
    """Registered entity type: mapped class plus its table"""
    name: str
    entity_class: type
    table: Table

    def column(self, name: str) -> ColumnElement:
        return _column(name, self.table)


class SQLRecord(EntityHandle):
    """
    SQL entity handle.

    Holds a mapped instance between operations; each save or delete opens a
    short-lived session and re-attaches the instance to it.
    """

    def __init__(self, session_factory: async_sessionmaker, model: TableModel, instance: SQLRow):
        self._session_factory = session_factory
        self._model = model
        self._instance = instance

    @property
    def id(self) -> Optional[int]:
        return self._instance.id

    @property
    def instance(self) -> SQLRow:
        return self._instance

    @property
    def entity_type(self) -> str:
        return self._model.name

    def get(self, name: str) -> EntityValue:
        return getattr(self._instance, name, None)

    def set(self, name: str, value: EntityValue = None) -> None:
        setattr(self._instance, name, value)

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self._instance, key) for key in self._model.table.columns.keys()}

    async def save(self) -> None:
        async with self._session_factory() as session:
            session.add(self._instance)
            await session.commit()

    async def delete(self) -> None:
        async with self._session_factory() as session:
            session.add(self._instance)
            await session.delete(self._instance)
            await session.commit()


# ── Criteria translation ──────────────────────────────────────

def _column(name: str, table: Optional[Table] = None) -> ColumnElement:
    if table is None:
        return column(name)
    if name not in table.columns:
        raise InvalidCriteriaError(f"Unknown field '{name}' for {table.name}")
    return table.columns[name]


def build_where(search: Optional[SearchCriteria], table: Optional[Table] = None) -> List[ColumnElement]:
    """
    Translate neutral search criteria into an ordered list of SQL clauses.

    The caller combines the clauses with AND; an empty list means no WHERE
    clause at all. Passing ``table`` binds clauses to its typed columns and
    rejects fields the table does not have.
    """
    clauses: List[ColumnElement] = []
    for field, value in iter_criteria(search):
        target = _column(field, table)
        if isinstance(value, Range):
            if value.has_lower and value.has_upper:
                clauses.append(target.between(value.greater_than, value.less_than))
            elif value.has_lower:
                clauses.append(target > value.greater_than)
            elif value.has_upper:
                clauses.append(target < value.less_than)
        elif is_pattern(value):
            clauses.append(target.regexp_match(value.pattern))
        else:
            clauses.append(target == value)
    return clauses


def build_order(sort: Optional[SortSpecification], table: Optional[Table] = None) -> List[ColumnElement]:
    """ORDER BY for the first entry of the sort specification only"""
    if not sort:
        return []
    field, direction = next(iter(sort.items()))
    target = _column(field, table)
    return [asc(target) if is_ascending(direction) else desc(target)]


# ── Connection ────────────────────────────────────────────────

class SQLConnection(ConnectionManager[TableModel]):
    """Connection manager for a SQLAlchemy async engine"""

    backend_name = "SQL"

    def __init__(self, config: Optional[SQLConfig] = None,
                 engine_factory: Optional[Callable[..., AsyncEngine]] = None, **kwargs):
        super().__init__(**kwargs)
        self.config = config or SQLConfig()
        self._engine_factory = engine_factory or create_async_engine
        self.engine: Optional[AsyncEngine] = None
        self.metadata: Optional[MetaData] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._registry: Optional[registry] = None

    def _validate(self, descriptor: SchemaDescriptor) -> None:
        build_columns(descriptor.schema_definition, self.config.timestamps)

    async def _open(self, connection: str) -> None:
        self.engine = self._engine_factory(
            connection,
            echo=self.config.echo,
            connect_args=self.config.connect_args
        )
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

        self.metadata = MetaData()
        self._registry = registry(metadata=self.metadata)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    def _register(self, descriptor: SchemaDescriptor) -> TableModel:
        table = Table(
            descriptor.name,
            self.metadata,
            *build_columns(descriptor.schema_definition, self.config.timestamps)
        )
        entity_class = type(descriptor.name, (SQLRow,), {"__table__": table})
        self._registry.map_imperatively(entity_class, table)
        return TableModel(descriptor.name, entity_class, table)

    async def _sync(self, mappings: Mapping[str, TableModel]) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)
        self.logger.debug(f"Synchronized {len(mappings)} SQL tables")

    async def _close(self) -> None:
        engine = self.engine
        self.engine = None
        self.metadata = None
        self.session_factory = None
        self._registry = None
        await engine.dispose()

    def _has_handle(self) -> bool:
        return self.engine is not None


# ── Service ───────────────────────────────────────────────────

class SQLDBService(DBService):
    """
    SQL data access service.

    Example:
        service = SQLDBService()
        await service.connect(logger, "sqlite+aiosqlite:///app.db", [
            {"name": "book", "schemaDefinition": {"title": str, "price": float}}
        ])
        book = await service.create("book", {"title": "Dune", "price": 9.5})
    """

    creates_persisted = True
    range_bounds_inclusive = True
    supports_compound_sort = False

    def __init__(self, config: Optional[ServiceConfig] = None,
                 engine_factory: Optional[Callable[..., AsyncEngine]] = None):
        self.config = config or ServiceConfig()
        self.connection = SQLConnection(
            self.config.sql,
            engine_factory=engine_factory,
            retry_interval=self.config.connection.retry_interval,
            max_attempts=self.config.connection.max_attempts,
        )

    @property
    def logger(self) -> logging.Logger:
        return self.connection.logger

    def _record(self, model: TableModel, instance: SQLRow) -> SQLRecord:
        return SQLRecord(self.connection.session_factory, model, instance)

    async def connect(self, logger: Optional[logging.Logger], connection: str,
                      schema: Sequence[Union[SchemaDescriptor, Mapping[str, Any]]]) -> None:
        """Connect, define tables and create them, retrying until success"""
        await self.connection.connect(connection, schema, logger=logger)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    async def create(self, entity_type: str, values: Mapping[str, Any]) -> SQLRecord:
        async with self.connection.operation(entity_type) as model:
            try:
                record = self._record(model, model.entity_class(**dict(values or {})))
                await record.save()
            except (TypeError, ValueError, SQLAlchemyError) as e:
                raise InstantiationFailedError(f"Failed to instantiate new entity - {e}") from e
            return record

    async def save(self, entity: SQLRecord) -> bool:
        async with self.connection.operation():
            try:
                await entity.save()
            except SQLAlchemyError as e:
                raise PersistenceFailedError(f"Failed to save {entity.entity_type} - {e}") from e
        return True

    async def fetch(self, entity_type: str, prop_name: str,
                    value: EntityValue) -> Optional[SQLRecord]:
        async with self.connection.operation(entity_type) as model:
            async with self.connection.session_factory() as session:
                if prop_name == "id":
                    instance = await session.get(model.entity_class, value)
                else:
                    stmt = select(model.entity_class).where(model.column(prop_name) == value).limit(1)
                    instance = (await session.execute(stmt)).scalars().first()
            return self._record(model, instance) if instance is not None else None

    async def fetch_all(self, entity_type: str, prop_name: Optional[str] = None,
                        value: EntityValue = None) -> List[SQLRecord]:
        async with self.connection.operation(entity_type) as model:
            stmt = select(model.entity_class)
            if prop_name:
                stmt = stmt.where(model.column(prop_name) == value)
            return await self._execute(model, stmt)

    async def find_all(self, entity_type: str,
                       search: Optional[SearchCriteria] = None,
                       sort: Optional[SortSpecification] = None,
                       start: Optional[int] = None,
                       limit: Optional[int] = None) -> List[SQLRecord]:
        async with self.connection.operation(entity_type) as model:
            clauses = build_where(search, model.table)
            self.logger.debug(
                f"SQLDBService find_all - Performing search for - {[str(clause) for clause in clauses]}"
            )

            stmt = select(model.entity_class)
            if clauses:
                stmt = stmt.where(and_(*clauses))
            if sort:
                self.logger.debug(f"SQLDBService find_all - sorting - {dict(sort)}")
                stmt = stmt.order_by(*build_order(sort, model.table))
            if start:
                self.logger.debug(f"SQLDBService find_all - skipping - {start}")
                stmt = stmt.offset(start)
            if limit:
                self.logger.debug(f"SQLDBService find_all - limiting - {limit}")
                stmt = stmt.limit(limit)

            return await self._execute(model, stmt)

    async def _execute(self, model: TableModel, stmt) -> List[SQLRecord]:
        async with self.connection.session_factory() as session:
            result = await session.execute(stmt)
            return [self._record(model, instance) for instance in result.scalars().all()]

    async def remove(self, entity: SQLRecord) -> bool:
        async with self.connection.operation():
            try:
                await entity.delete()
            except SQLAlchemyError as e:
                raise PersistenceFailedError(f"Failed to remove {entity.entity_type} - {e}") from e
        return True
