"""
dbservice - Backend-Agnostic Data Access

Connect once, then create, fetch, query and remove entities through the same
DBService contract whether MongoDB or a SQL database is active.

Example:
    import logging
    from dbservice import create_default_factory

    service = create_default_factory().create_service("sql")
    await service.connect(logging.getLogger("app"), "sqlite+aiosqlite:///app.db", [
        {"name": "book", "schemaDefinition": {"title": str, "price": float}}
    ])
    cheap = await service.find_all("book", {"price": {"lt": 10}}, sort={"title": 1})
    await service.disconnect()
"""

from .config import (
    ConnectionConfig, Environment, LoggingConfig, MongoConfig, SQLConfig,
    ServiceConfig, configure_logging
)
from .persistence import *  # noqa: F401,F403
from .persistence import __all__ as _persistence_all
from .persistence.backends import MongoDBService, SQLDBService

__version__ = "0.1.0"

__all__ = [
    "ConnectionConfig", "Environment", "LoggingConfig", "MongoConfig",
    "SQLConfig", "ServiceConfig", "configure_logging",
    "MongoDBService", "SQLDBService",
    *_persistence_all
]
