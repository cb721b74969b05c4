"""
Configuration partagée pour tous les tests.

- `client` : override de get_db (MagicMock) pour éviter toute connexion à PostgreSQL
- `as_user` : injecte l'utilisateur courant sans passer par l'en-tête X-User-Id
- `db_session` : SQLite en mémoire (StaticPool + SAVEPOINT) pour les invariants
  qui exigent un vrai stockage (upsert idempotent, ordre de synchro, unicité des clés)
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import MagicMock

import pollwatch.models  # noqa: F401
from pollwatch.database import Base, get_db
from pollwatch.dependencies import get_current_user, require_active_monitor_key, require_admin
from pollwatch.main import app
from pollwatch.models.user import KEY_STATUS_ACTIVE, User


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def as_user():
    """Fixe l'utilisateur courant pour les dépendances d'identification."""
    def _set(user):
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[require_active_monitor_key] = lambda: user
        if user.role == "ADMIN":
            app.dependency_overrides[require_admin] = lambda: user
        return user
    return _set


@pytest.fixture
def db_session():
    """Session SQLite en mémoire, schéma complet, SAVEPOINT fonctionnels (pysqlite)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


def make_user(
    designation="Polling Unit Agent",
    voting_state="Lagos",
    voting_lga="Ikeja",
    voting_ward="Ward 01",
    voting_pu="Alausa Primary School",
    polling_unit_code="24-09-01-001",
    monitor_key=None,
    key_status=None,
    role="MEMBER",
    email=None,
    name="Ada Obi",
) -> User:
    """Utilisateur non persisté (pour MagicMock ou db_session.add)."""
    return User(
        id=uuid.uuid4(),
        email=email,
        name=name,
        role=role,
        designation=designation,
        voting_state=voting_state,
        voting_lga=voting_lga,
        voting_ward=voting_ward,
        voting_pu=voting_pu,
        polling_unit_code=polling_unit_code,
        monitor_key=monitor_key,
        key_status=key_status,
    )


def make_monitor(**kwargs) -> User:
    """Observateur avec une clé active."""
    kwargs.setdefault("monitor_key", "AB23CD")
    kwargs.setdefault("key_status", KEY_STATUS_ACTIVE)
    return make_user(**kwargs)
