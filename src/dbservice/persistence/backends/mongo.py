"""
MongoDB Service - Document Store Backend

📄 Document Database Backend:
Data access service backed by MongoDB through pymongo's asyncio client.
Entity schemas become pydantic record classes that validate initial values;
documents live in one collection per entity type.

Backend behaviour worth knowing:
- ``create`` returns an unsaved Document; call ``save`` to persist it
- ranges with both bounds translate to exclusive ``$gt``/``$lt``
- every entry of a sort specification is honoured, in order
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type, Union

from bson import ObjectId
from bson.errors import BSONError, InvalidId
from pydantic import BaseModel, ConfigDict, ValidationError, create_model
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.errors import PyMongoError

from ...config import MongoConfig, ServiceConfig
from ..connection import ConnectionManager
from ..criteria import Range, SearchCriteria, SortSpecification, is_ascending, iter_criteria
from ..errors import InstantiationFailedError, InvalidSchemaError, PersistenceFailedError
from ..interface import DBService, EntityHandle, EntityValue, SchemaDescriptor

_TYPE_NAMES: Dict[str, type] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "date": datetime,
    "array": list,
    "object": dict,
}
_FIELD_OPTIONS = {"type", "required", "default"}
_RESERVED_FIELDS = {"id", "_id"}


class DocumentRecord(BaseModel):
    """Base for generated record classes; unknown fields are kept as extras"""
    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _resolve_type(definition: Any) -> type:
    if isinstance(definition, str):
        try:
            return _TYPE_NAMES[definition.lower()]
        except KeyError:
            raise InvalidSchemaError(f"Unknown field type name '{definition}'") from None
    if isinstance(definition, type) or hasattr(definition, "__origin__"):
        return definition
    raise InvalidSchemaError(f"Unsupported field definition {definition!r}")


def _field_definition(name: str, definition: Any) -> Tuple[Any, Any]:
    """Convert one schema entry to a pydantic ``(type, default)`` pair"""
    if name in _RESERVED_FIELDS:
        raise InvalidSchemaError(f"Field name '{name}' is reserved for the document id")

    if isinstance(definition, Mapping):
        unknown = set(definition) - _FIELD_OPTIONS
        if unknown:
            raise InvalidSchemaError(f"Unsupported options {sorted(unknown)} for field '{name}'")
        field_type = _resolve_type(definition.get("type", object))
        if definition.get("required"):
            return field_type, definition.get("default", ...)
        return Optional[field_type], definition.get("default")

    return Optional[_resolve_type(definition)], None


def build_record_class(descriptor: SchemaDescriptor) -> Type[DocumentRecord]:
    """Generate the pydantic record class for an entity type"""
    fields = {
        name: _field_definition(name, definition)
        for name, definition in descriptor.schema_definition.items()
    }
    return create_model(descriptor.name, __base__=DocumentRecord, **fields)


def _to_object_id(value: Any) -> ObjectId:
    return value if isinstance(value, ObjectId) else ObjectId(value)


@dataclass
class DocumentModel:
    """Registered entity type: record class plus its collection"""
    name: str
    record_class: Type[DocumentRecord]
    collection: Any
    timestamps: bool = True

    def instantiate(self, values: Mapping[str, Any]) -> 'Document':
        record = self.record_class.model_validate(dict(values or {}))
        return Document(self, record)

    def from_raw(self, raw: Mapping[str, Any]) -> 'Document':
        """
        Hydrate a stored document.

        Documents written by other clients need not match the schema; those
        are loaded as stored, with missing required fields set to None.
        """
        data = dict(raw)
        object_id = data.pop("_id", None)
        try:
            record = self.record_class.model_validate(data)
        except ValidationError:
            missing = {
                name: None for name, info in self.record_class.model_fields.items()
                if info.is_required() and name not in data
            }
            record = self.record_class.model_construct(**data, **missing)
        return Document(self, record, object_id)


class Document(EntityHandle):
    """
    MongoDB entity handle.

    Wraps a validated record and the ObjectId assigned on first save.
    Attribute assignment is not re-validated.
    """

    def __init__(self, model: DocumentModel, record: DocumentRecord,
                 object_id: Optional[ObjectId] = None):
        self._model = model
        self._record = record
        self._object_id = object_id

    @property
    def id(self) -> Optional[str]:
        return str(self._object_id) if self._object_id is not None else None

    @property
    def object_id(self) -> Optional[ObjectId]:
        return self._object_id

    @property
    def entity_type(self) -> str:
        return self._model.name

    def get(self, name: str) -> EntityValue:
        if name in _RESERVED_FIELDS:
            return self.id
        return getattr(self._record, name, None)

    def set(self, name: str, value: EntityValue = None) -> None:
        if name in _RESERVED_FIELDS:
            self._object_id = value
            return
        setattr(self._record, name, value)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self._record.model_dump()}

    def _document(self) -> Dict[str, Any]:
        if not self._model.timestamps:
            return self._record.model_dump(exclude={"created_at", "updated_at"})

        now = datetime.now(timezone.utc)
        if self._record.created_at is None:
            self._record.created_at = now
        self._record.updated_at = now
        return self._record.model_dump()

    async def save(self) -> None:
        document = self._document()
        if self._object_id is None:
            result = await self._model.collection.insert_one(document)
            self._object_id = result.inserted_id
        else:
            self._object_id = _to_object_id(self._object_id)
            await self._model.collection.replace_one({"_id": self._object_id}, document, upsert=True)

    async def delete(self) -> None:
        if self._object_id is None:
            return
        await self._model.collection.delete_one({"_id": _to_object_id(self._object_id)})


# ── Criteria translation ──────────────────────────────────────

def translate_search(search: Optional[SearchCriteria]) -> Dict[str, Any]:
    """
    Translate neutral search criteria into a MongoDB filter document.

    Scalars and compiled patterns map straight to ``{field: value}``; ranges
    become ``{"$gt": .., "$lt": ..}`` with only the truthy bounds present.
    """
    query: Dict[str, Any] = {}
    for field, value in iter_criteria(search):
        if isinstance(value, Range):
            if value.is_empty:
                continue
            clause: Dict[str, Any] = {}
            if value.has_lower:
                clause["$gt"] = value.greater_than
            if value.has_upper:
                clause["$lt"] = value.less_than
            query[field] = clause
        else:
            query[field] = value
    return query


def translate_sort(sort: Optional[SortSpecification]) -> List[Tuple[str, int]]:
    """Sort specification as pymongo ``(key, direction)`` pairs"""
    return [
        (field, ASCENDING if is_ascending(direction) else DESCENDING)
        for field, direction in (sort or {}).items()
    ]


# ── Connection ────────────────────────────────────────────────

class MongoConnection(ConnectionManager[DocumentModel]):
    """Connection manager for a MongoDB deployment"""

    backend_name = "MongoDB"

    def __init__(self, config: Optional[MongoConfig] = None,
                 client_factory: Optional[Callable[..., Any]] = None, **kwargs):
        super().__init__(**kwargs)
        self.config = config or MongoConfig()
        self._client_factory = client_factory or AsyncMongoClient
        self.client: Optional[Any] = None
        self.database: Optional[Any] = None

    def _validate(self, descriptor: SchemaDescriptor) -> None:
        build_record_class(descriptor)

    async def _open(self, connection: str) -> None:
        self.client = self._client_factory(
            connection,
            serverSelectionTimeoutMS=self.config.server_selection_timeout_ms
        )
        await self.client.admin.command("ping")
        self.database = self.client.get_default_database(default=self.config.default_database)

    def _register(self, descriptor: SchemaDescriptor) -> DocumentModel:
        return DocumentModel(
            name=descriptor.name,
            record_class=build_record_class(descriptor),
            collection=self.database[descriptor.name],
            timestamps=self.config.timestamps
        )

    async def _close(self) -> None:
        client, self.client, self.database = self.client, None, None
        await client.close()

    def _has_handle(self) -> bool:
        return self.client is not None


# ── Service ───────────────────────────────────────────────────

class MongoDBService(DBService):
    """
    MongoDB data access service.

    Example:
        service = MongoDBService()
        await service.connect(logger, "mongodb://localhost/app", [
            {"name": "book", "schemaDefinition": {"title": str, "price": float}}
        ])
        book = await service.create("book", {"title": "Dune", "price": 9.5})
        await service.save(book)
    """

    creates_persisted = False
    range_bounds_inclusive = False
    supports_compound_sort = True

    def __init__(self, config: Optional[ServiceConfig] = None,
                 client_factory: Optional[Callable[..., Any]] = None):
        self.config = config or ServiceConfig()
        self.connection = MongoConnection(
            self.config.mongo,
            client_factory=client_factory,
            retry_interval=self.config.connection.retry_interval,
            max_attempts=self.config.connection.max_attempts,
        )

    @property
    def logger(self) -> logging.Logger:
        return self.connection.logger

    async def connect(self, logger: Optional[logging.Logger], connection: str,
                      schema: Sequence[Union[SchemaDescriptor, Mapping[str, Any]]]) -> None:
        """Connect to MongoDB and set up schemas, retrying until success"""
        await self.connection.connect(connection, schema, logger=logger)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    async def create(self, entity_type: str, values: Mapping[str, Any]) -> Document:
        async with self.connection.operation(entity_type) as model:
            try:
                return model.instantiate(values)
            except (TypeError, ValueError) as e:
                raise InstantiationFailedError(f"Failed to instantiate new entity - {e}") from e

    async def save(self, entity: Document) -> bool:
        async with self.connection.operation():
            try:
                await entity.save()
            except (PyMongoError, BSONError) as e:
                raise PersistenceFailedError(f"Failed to save {entity.entity_type} - {e}") from e
        return True

    async def fetch(self, entity_type: str, prop_name: str,
                    value: EntityValue) -> Optional[Document]:
        async with self.connection.operation(entity_type) as model:
            if prop_name in _RESERVED_FIELDS:
                try:
                    query = {"_id": _to_object_id(value)}
                except (InvalidId, TypeError):
                    self.logger.debug(f"MongoDBService fetch - '{value}' is not a valid document id")
                    return None
            else:
                query = {prop_name: value}

            raw = await model.collection.find_one(query)
            return model.from_raw(raw) if raw is not None else None

    async def fetch_all(self, entity_type: str, prop_name: Optional[str] = None,
                        value: EntityValue = None) -> List[Document]:
        async with self.connection.operation(entity_type) as model:
            query = {prop_name: value} if prop_name else {}
            raws = await model.collection.find(query).to_list(None)
            return [model.from_raw(raw) for raw in raws]

    async def find_all(self, entity_type: str,
                       search: Optional[SearchCriteria] = None,
                       sort: Optional[SortSpecification] = None,
                       start: Optional[int] = None,
                       limit: Optional[int] = None) -> List[Document]:
        async with self.connection.operation(entity_type) as model:
            query = translate_search(search)
            self.logger.debug(f"MongoDBService find_all - Performing search for - {query}")

            cursor = model.collection.find(query)
            if sort:
                self.logger.debug(f"MongoDBService find_all - sorting - {dict(sort)}")
                cursor = cursor.sort(translate_sort(sort))
            if start:
                self.logger.debug(f"MongoDBService find_all - skipping - {start}")
                cursor = cursor.skip(start)
            if limit:
                self.logger.debug(f"MongoDBService find_all - limiting - {limit}")
                cursor = cursor.limit(limit)

            raws = await cursor.to_list(None)
            return [model.from_raw(raw) for raw in raws]

    async def remove(self, entity: Document) -> bool:
        async with self.connection.operation():
            try:
                await entity.delete()
            except (PyMongoError, BSONError) as e:
                raise PersistenceFailedError(f"Failed to remove {entity.entity_type} - {e}") from e
        return True
