"""
Test fixtures for the payment gateway core.

This module provides shared test fixtures including database setup,
configuration with a throwaway encryption key, and a Jenga signing key.
"""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.orm import Session

from payment_gateway_core.config import (
    AppConfig,
    JengaConfig,
    KcbConfig,
    MpesaConfig,
    SecurityConfig,
    set_config,
)
from payment_gateway_core.db import DatabaseConfig, DatabaseManager, import_all_models
from payment_gateway_core.db.db_config import Base, initialize_db
from payment_gateway_core.exceptions import clear_correlation_id
from payment_gateway_core.utils.encryption_utils import generate_key
from tests.fixtures.factories import configure_factories

MPESA_TEST_NETWORK = "196.201.214.0/24"
JENGA_TEST_NETWORK = "10.20.0.0/16"
KCB_TEST_NETWORK = "10.30.0.0/16"


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    manager = initialize_db(db_config)

    yield manager

    manager.close()


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Create a database session for each test.

    Tables are created before and dropped after every test, so services
    that commit cannot leak rows into the next test.
    """
    session = db_manager.get_session()
    Base.metadata.create_all(db_manager.engine)
    configure_factories(session)

    yield session

    session.rollback()
    db_manager.close_session()
    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture(scope="session")
def rsa_private_key_pem() -> str:
    """PEM encoded RSA key for Jenga request signing."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture(scope="function")
def app_config(rsa_private_key_pem) -> AppConfig:
    """Configuration with a fresh vault key and test allow-lists."""
    config = AppConfig(
        security=SecurityConfig(encryption_key=generate_key()),
        mpesa=MpesaConfig(
            callback_url="https://gateway.test/api/callbacks/mpesa",
            allowed_networks=[MPESA_TEST_NETWORK],
            http_timeout=5,
        ),
        jenga=JengaConfig(
            callback_url="https://gateway.test/api/callbacks/jenga",
            allowed_networks=[JENGA_TEST_NETWORK],
            http_timeout=5,
            private_key=rsa_private_key_pem,
        ),
        kcb=KcbConfig(
            callback_url="https://gateway.test/api/callbacks/kcb",
            allowed_networks=[KCB_TEST_NETWORK],
            http_timeout=5,
        ),
    )
    set_config(config)
    return config


@pytest.fixture(autouse=True)
def _clear_correlation():
    yield
    clear_correlation_id()
