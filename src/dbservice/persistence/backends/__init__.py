"""
Persistence Backends

- mongo.py: MongoDB through pymongo's asyncio client
- sql.py: any SQLAlchemy async dialect (SQLite, PostgreSQL, MySQL)
"""

from .mongo import (
    Document, DocumentModel, MongoConnection, MongoDBService,
    translate_search, translate_sort
)
from .sql import (
    SQLConnection, SQLDBService, SQLRecord, TableModel,
    build_order, build_where
)

__all__ = [
    "Document", "DocumentModel", "MongoConnection", "MongoDBService",
    "translate_search", "translate_sort",
    "SQLConnection", "SQLDBService", "SQLRecord", "TableModel",
    "build_order", "build_where"
]
