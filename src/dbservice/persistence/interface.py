"""
Data Access Service Interface

Standard contract implemented once per backend. Application code talks to
a DBService without knowing whether a document store or a relational store
sits behind it.

The two backends differ in a few observable ways. Rather than hiding those
differences each implementation declares them as capability flags:

- ``creates_persisted``: ``create`` writes the record immediately (relational)
  or returns an in-memory entity that needs an explicit ``save`` (document).
- ``range_bounds_inclusive``: whether a range with both bounds matches values
  equal to either bound.
- ``supports_compound_sort``: whether every entry of a sort specification is
  honoured or only the first one.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Union

from .criteria import SearchCriteria, SortSpecification

EntityValue = Any


@dataclass(frozen=True)
class SchemaDescriptor:
    """Entity type name paired with its backend-native field definitions"""
    name: str
    schema_definition: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Union['SchemaDescriptor', Mapping[str, Any]]) -> 'SchemaDescriptor':
        """Accept descriptors or plain ``{"name", "schemaDefinition"}`` mappings"""
        if isinstance(value, SchemaDescriptor):
            return value
        definition = value.get("schema_definition", value.get("schemaDefinition", {}))
        return cls(name=value["name"], schema_definition=definition or {})


class EntityHandle(ABC):
    """
    Backend-owned mutable record.

    Handles are only valid while the connection that produced them is open;
    using one after disconnect is a caller error and is rejected by the
    service with NotConnectedError.
    """

    @property
    @abstractmethod
    def id(self) -> Optional[Any]:
        """Backend identity of the record, None until persisted"""
        pass

    @abstractmethod
    def get(self, name: str) -> EntityValue:
        pass

    @abstractmethod
    def set(self, name: str, value: EntityValue = None) -> None:
        pass

    @abstractmethod
    async def save(self) -> None:
        """Write the record to the backend"""
        pass

    @abstractmethod
    async def delete(self) -> None:
        """Remove the record from the backend"""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Plain copy of the record's fields"""
        return {}

    def __repr__(self):
        return f"<{self.__class__.__name__} id={self.id!r}>"


class DBService(ABC):
    """
    Backend-agnostic data access service.

    ``connect`` blocks until the backend accepts the connection, retrying on a
    fixed interval. Every other operation fails fast with NotConnectedError
    until then.
    """

    creates_persisted: ClassVar[bool] = False
    range_bounds_inclusive: ClassVar[bool] = False
    supports_compound_sort: ClassVar[bool] = True

    @abstractmethod
    async def connect(self, logger: Optional[logging.Logger], connection: str,
                      schema: Sequence[Union[SchemaDescriptor, Mapping[str, Any]]]) -> None:
        """
        Connect to the backend and register entity schemas.

        Args:
            logger: Logger for connection and query diagnostics
            connection: Backend connection string
            schema: Entity names and their field definitions

        Raises:
            InvalidSchemaError: If a descriptor cannot be modelled by the backend
            ConnectionStateError: If already connecting or connected
            ConnectionCancelledError: If disconnect abandons the retry loop
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the backend. Never raises."""
        pass

    @abstractmethod
    async def create(self, entity_type: str, values: Mapping[str, Any]) -> EntityHandle:
        """
        Create a new instance of an entity type.

        Args:
            entity_type: Registered entity type name
            values: Initial field values

        Returns:
            The new entity, persisted or not depending on ``creates_persisted``
        """
        pass

    def set_prop(self, entity: EntityHandle, prop_name: str, value: EntityValue = None) -> None:
        """Set a property on an entity, without schema validation"""
        entity.set(prop_name, value)

    def get_prop(self, entity: EntityHandle, prop_name: str) -> EntityValue:
        """Get a property value from an entity"""
        return entity.get(prop_name)

    @abstractmethod
    async def save(self, entity: EntityHandle) -> bool:
        pass

    @abstractmethod
    async def fetch(self, entity_type: str, prop_name: str,
                    value: EntityValue) -> Optional[EntityHandle]:
        """
        Fetch the first entity whose property matches a value.

        ``prop_name == "id"`` performs an identity lookup.
        """
        pass

    @abstractmethod
    async def fetch_all(self, entity_type: str, prop_name: Optional[str] = None,
                        value: EntityValue = None) -> List[EntityHandle]:
        """Fetch entities matching one property, or all when no property is given"""
        pass

    @abstractmethod
    async def find_all(self, entity_type: str,
                       search: Optional[SearchCriteria] = None,
                       sort: Optional[SortSpecification] = None,
                       start: Optional[int] = None,
                       limit: Optional[int] = None) -> List[EntityHandle]:
        """
        Find entities matching neutral search criteria.

        Args:
            entity_type: Registered entity type name
            search: Field to scalar, pattern or range mapping
            sort: Field to direction mapping, positive is ascending
            start: Number of matches to skip
            limit: Maximum number of matches to return
        """
        pass

    @abstractmethod
    async def remove(self, entity: EntityHandle) -> bool:
        pass
