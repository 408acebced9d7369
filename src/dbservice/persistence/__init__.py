"""
Persistence - Data Access Services

💾 One Contract, Two Stores:
Application code performs CRUD and queries through DBService without knowing
whether MongoDB or a SQL database is behind it.

Structure:
- interface.py: DBService contract, EntityHandle, SchemaDescriptor
- criteria.py: backend-neutral search/sort description
- connection.py: retry-until-success connection state machine
- manager.py: service factory
- backends/: MongoDB and SQL implementations
"""

from .connection import ConnectionManager, ConnectionState
from .criteria import Range, SearchCriteria, SortSpecification
from .errors import (
    ConnectionCancelledError, ConnectionFailedError, ConnectionStateError,
    DBServiceError, InstantiationFailedError, InvalidCriteriaError,
    InvalidSchemaError, ModelNotFoundError, NotConnectedError,
    PersistenceFailedError, UnknownServiceError
)
from .interface import DBService, EntityHandle, SchemaDescriptor
from .manager import DBServiceFactory, create_default_factory

__all__ = [
    "ConnectionManager", "ConnectionState",
    "Range", "SearchCriteria", "SortSpecification",
    "DBService", "EntityHandle", "SchemaDescriptor",
    "DBServiceFactory", "create_default_factory",
    "DBServiceError", "NotConnectedError", "ModelNotFoundError",
    "InstantiationFailedError", "PersistenceFailedError",
    "ConnectionFailedError", "ConnectionStateError", "ConnectionCancelledError",
    "InvalidCriteriaError", "InvalidSchemaError", "UnknownServiceError"
]
