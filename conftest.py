import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import session_manager
from app.models.database import Base, get_db, seed_municipalities
from app.services.auth_service import ensure_admin


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_municipalities(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db, session_factory):
    from main import app

    ensure_admin(db)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    session_manager.clear_sessions()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        session_manager.clear_sessions()
