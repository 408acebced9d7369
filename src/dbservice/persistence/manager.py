"""
Service Factory - Backend Registry

🏭 Backend Selection:
Maps a backend type key ("mongo", "sql", ...) to a DBService implementation
and instantiates it on demand, so application code picks its store through
configuration rather than imports.
"""

import logging
from typing import Any, Dict, Optional, Type

from .errors import UnknownServiceError
from .interface import DBService


class DBServiceFactory:
    """
    Registry of data access service implementations.

    Example:
        factory = DBServiceFactory()
        factory.register_service("sql", SQLDBService)
        service = factory.create_service("sql")
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._services: Dict[str, Type[DBService]] = {}

    def register_service(self, service_type: str, service: Type[DBService]) -> None:
        """Register a service class under a type key, replacing any previous one"""
        self._services[service_type] = service
        self.logger.debug(f"Registered db service for {service_type}: {service.__name__}")

    def create_service(self, service_type: str, **kwargs: Any) -> DBService:
        """
        Instantiate the service registered for a type.

        Args:
            service_type: Registered type key
            **kwargs: Passed to the service constructor

        Raises:
            UnknownServiceError: If nothing is registered for the type
        """
        service = self._services.get(service_type)
        if service is None:
            self.logger.error(f"Unhandled db service type - {service_type}")
            raise UnknownServiceError(f"Unhandled db service type - {service_type}")
        return service(**kwargs)

    def list_services(self) -> Dict[str, Type[DBService]]:
        return dict(self._services)

    def __contains__(self, service_type: str) -> bool:
        return service_type in self._services


def create_default_factory(logger: Optional[logging.Logger] = None) -> DBServiceFactory:
    """Factory with the MongoDB and SQL services registered as "mongo" and "sql" """
    from .backends.mongo import MongoDBService
    from .backends.sql import SQLDBService

    factory = DBServiceFactory(logger)
    factory.register_service("mongo", MongoDBService)
    factory.register_service("sql", SQLDBService)
    return factory
