"""
Database settings and session management.

Postgres in production, SQLite for development and tests. Connection URLs
are assembled with ``URL.create`` so credentials need no escaping.
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, SecretStr
from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker

from ..exceptions import ConfigError, ErrorCode
from ..utils import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()


class DatabaseConfig(BaseModel):
    """Connection settings. The password never appears in reprs or logs."""

    db_type: str = "postgres"
    database: str
    host: str = "localhost"
    port: int = 5432
    username: str = ""
    password: SecretStr = SecretStr("")
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        return self.db_type.lower() == "sqlite"

    def get_connection_url(self) -> URL:
        """
        Raises:
            ConfigError: Unsupported backend, or Postgres settings are incomplete
        """
        if self.is_sqlite:
            return URL.create("sqlite", database=self.database)

        if self.db_type.lower() != "postgres":
            raise ConfigError(
                f"Unsupported database type: {self.db_type}",
                error_code=ErrorCode.INVALID_FORMAT,
                db_type=self.db_type,
            )

        password = self.password.get_secret_value()
        required = {
            "host": self.host,
            "database": self.database,
            "username": self.username,
            "password": password,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigError(
                "Missing required Postgres configuration parameters",
                error_code=ErrorCode.MISSING_REQUIRED,
                missing=missing,
                host=self.host,
                database=self.database,
            )

        return URL.create(
            "postgresql+psycopg2",
            username=self.username,
            password=password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def engine_options(self) -> Dict[str, Any]:
        if self.is_sqlite:
            # Sessions are handed across Functions worker threads
            return {"echo": self.echo, "connect_args": {"check_same_thread": False}}
        return {
            "echo": self.echo,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_pre_ping": True,
        }


class DatabaseManager:
    """Owns the engine and a thread-scoped session registry."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine: Engine = create_engine(config.get_connection_url(), **config.engine_options())
        self.session_factory = sessionmaker(bind=self.engine)
        self.scoped_session = scoped_session(self.session_factory)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        return self.scoped_session()

    def close_session(self, session: Optional[Session] = None) -> None:
        if session is not None:
            session.close()
        else:
            self.scoped_session.remove()

    def close(self) -> None:
        """Drop the thread's session and every pooled connection."""
        self.scoped_session.remove()
        self.engine.dispose()


def get_development_config() -> DatabaseConfig:
    """SQLite settings, in memory unless ``DEV_DB_PATH`` names a file."""
    return DatabaseConfig(
        db_type="sqlite",
        database=os.environ.get("DEV_DB_PATH", ":memory:"),
        echo=os.environ.get("DB_ECHO", "false").lower() == "true",
    )


def get_production_config() -> DatabaseConfig:
    """Postgres settings from ``DB_*`` environment variables."""
    env = os.environ
    return DatabaseConfig(
        db_type="postgres",
        host=env.get("DB_HOST", "localhost"),
        port=int(env.get("DB_PORT", "5432")),
        database=env.get("DB_NAME", "payments_db"),
        username=env.get("DB_USER", "postgres"),
        password=env.get("DB_PASSWORD", ""),
        pool_size=int(env.get("DB_POOL_SIZE", "5")),
        max_overflow=int(env.get("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(env.get("DB_POOL_TIMEOUT", "30")),
        echo=env.get("DB_ECHO", "false").lower() == "true",
    )


def import_all_models():
    """Import all models to ensure they're registered with SQLAlchemy metadata."""
    from sqlalchemy.orm import configure_mappers

    from .db_audit_models import AuditEvent  # noqa
    from .db_credential_models import ProviderCredential  # noqa
    from .db_credit_models import CreditApplication, TenantCredit  # noqa
    from .db_invoice_models import Invoice, Payment, PaymentAllocation  # noqa
    from .db_property_models import Lease, Property, Unit  # noqa
    from .db_transaction_models import PaymentTransaction  # noqa

    configure_mappers()


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Build a DatabaseManager and make sure every table exists.

    Args:
        config: Connection settings; production settings from the environment when omitted
    """
    config = config or get_production_config()
    manager = DatabaseManager(config)
    get_logger().info(
        "Initializing database",
        extra={"db_type": config.db_type, "host": None if config.is_sqlite else config.host},
    )
    import_all_models()
    manager.create_tables()
    return manager
