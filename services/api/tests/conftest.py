import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ledger.main import app
from ledger.db import Base, get_db
from ledger.models import Location
from ledger.services.entities import create_actor, create_entity, upsert_membership
from ledger.services.inventory import create_resource

# --- Test Database Setup ---

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, 'sqlite')
def compile_jsonb(element, compiler, **kw):
    return "JSON"


SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite defers BEGIN until the first DML, which breaks SAVEPOINT (used by the audit log).
# Let SQLAlchemy emit BEGIN itself.
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Session shared by the test body and the app, so both see the same transaction state."""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(db_session):
    """Test client with DB override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.rollback()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


import fakeredis
import fakeredis.aioredis
from ledger.infra import redis_client


@pytest.fixture(autouse=True)
def mock_redis():
    server = fakeredis.FakeServer()
    redis_client._redis_async = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    yield
    redis_client._redis_async = None


from ledger.infra.rate_limit import limiter


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


# --- Household fixtures ---

@pytest.fixture
def admin(db_session):
    actor = create_actor(db_session, "admin@example.com", "Admin")
    db_session.commit()
    return actor


@pytest.fixture
def member(db_session, entity):
    actor = create_actor(db_session, "member@example.com", "Member")
    upsert_membership(db_session, entity.id, actor.id, "MEMBER")
    db_session.commit()
    return actor


@pytest.fixture
def outsider(db_session):
    actor = create_actor(db_session, "outsider@example.com", "Outsider")
    db_session.commit()
    return actor


@pytest.fixture
def entity(db_session, admin):
    household, _ = create_entity(db_session, admin.id, "Test Household")
    db_session.commit()
    return household


@pytest.fixture
def pantry(db_session, entity):
    return db_session.scalar(
        select(Location).where(Location.entity_id == entity.id, Location.name == "Pantry")
    )


@pytest.fixture
def fridge(db_session, entity):
    return db_session.scalar(
        select(Location).where(Location.entity_id == entity.id, Location.name == "Fridge")
    )


@pytest.fixture
def potatoes(db_session, entity):
    resource = create_resource(db_session, entity.id, "Gold potatoes", "lb")
    db_session.commit()
    return resource
