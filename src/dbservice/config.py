"""
Configuration Management for dbservice

🔧 Unified Configuration System:
Dataclass configuration for the data access services, with presets per
environment and overrides from ``DBSERVICE_*`` environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


@dataclass
class ConnectionConfig:
    """Connection retry behaviour"""
    retry_interval: float = 3.0  # seconds between attempts
    max_attempts: Optional[int] = None  # None retries forever


@dataclass
class MongoConfig:
    """Document store configuration"""
    default_database: str = "dbservice"
    server_selection_timeout_ms: int = 5000
    timestamps: bool = True


@dataclass
class SQLConfig:
    """Relational store configuration"""
    echo: bool = False
    timestamps: bool = True
    connect_args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ServiceConfig:
    """Complete data access service configuration"""
    environment: Environment = Environment.DEVELOPMENT
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    mongo: MongoConfig = field(default_factory=MongoConfig)
    sql: SQLConfig = field(default_factory=SQLConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def for_environment(cls, environment: Environment) -> 'ServiceConfig':
        """Create configuration for specific environment"""
        config = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            config.logging.level = "DEBUG"
            config.sql.echo = True

        elif environment == Environment.TESTING:
            config.connection.retry_interval = 0.01
            config.mongo.server_selection_timeout_ms = 500
            config.logging.level = "DEBUG"

        elif environment == Environment.PRODUCTION:
            config.logging.level = "INFO"

        return config

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'ServiceConfig':
        """Create configuration from dictionary"""
        environment = Environment(config_dict.get("environment", Environment.DEVELOPMENT.value))
        config = cls.for_environment(environment)

        for section in ("connection", "mongo", "sql", "logging"):
            target = getattr(config, section)
            for key, value in config_dict.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)

        return config

    @classmethod
    def from_environment(cls) -> 'ServiceConfig':
        """Create configuration from environment variables"""
        env_name = os.getenv('DBSERVICE_ENV', 'development')
        config = cls.for_environment(Environment(env_name))

        if os.getenv('DBSERVICE_RETRY_INTERVAL'):
            config.connection.retry_interval = float(os.getenv('DBSERVICE_RETRY_INTERVAL'))

        if os.getenv('DBSERVICE_MAX_ATTEMPTS'):
            config.connection.max_attempts = int(os.getenv('DBSERVICE_MAX_ATTEMPTS')) or None

        if os.getenv('DBSERVICE_MONGO_DATABASE'):
            config.mongo.default_database = os.getenv('DBSERVICE_MONGO_DATABASE')

        if os.getenv('DBSERVICE_SQL_ECHO'):
            config.sql.echo = os.getenv('DBSERVICE_SQL_ECHO').lower() == 'true'

        if os.getenv('DBSERVICE_LOG_LEVEL'):
            config.logging.level = os.getenv('DBSERVICE_LOG_LEVEL').upper()

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            "environment": self.environment.value,
            "connection": {
                "retry_interval": self.connection.retry_interval,
                "max_attempts": self.connection.max_attempts
            },
            "mongo": {
                "default_database": self.mongo.default_database,
                "server_selection_timeout_ms": self.mongo.server_selection_timeout_ms,
                "timestamps": self.mongo.timestamps
            },
            "sql": {
                "echo": self.sql.echo,
                "timestamps": self.sql.timestamps,
                "connect_args": self.sql.connect_args
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format
            }
        }


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Install a basic log handler using the given logging configuration"""
    config = config or LoggingConfig()
    logging.basicConfig(level=getattr(logging, config.level.upper(), logging.INFO),
                        format=config.format)
