"""
Shared test fixtures.

Sets up an isolated test database so tests never touch
the real database. Each test starts from empty tables and
gets a small organisation: one banca, one ventana, one
vendedor, an admin, a loteria with its multipliers and an
OPEN sorteo.
"""

import os

# Must be set before any banca_ledger import reads settings
TEST_DATABASE_URL = "sqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from datetime import timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from banca_ledger.main import app  # noqa: E402
from banca_ledger.models import (  # noqa: E402
    Base,
    Banca,
    BetType,
    Loteria,
    LoteriaMultiplier,
    Role,
    Sorteo,
    SorteoStatus,
    User,
    Ventana,
)
from banca_ledger.models.base import get_db, utcnow  # noqa: E402
from banca_ledger.schemas.common import Actor  # noqa: E402


engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)


# pysqlite manages transactions itself and breaks SAVEPOINT;
# hand transaction control back to SQLAlchemy.
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
def setup_database():
    """
    Create all tables before each test, drop them after.

    autouse=True means every test gets this automatically.
    """
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db_session):
    """
    Provide a test client with the test database.

    We override the get_db dependency so the FastAPI app
    uses our test session instead of the real database.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def org(db_session):
    """Banca -> ventana -> vendedor, plus an admin and a loteria."""
    banca = Banca(code="BAN-1", name="Banca Central")
    db_session.add(banca)
    db_session.flush()

    ventana = Ventana(banca_id=banca.id, code="VEN-1", name="Ventana Norte")
    db_session.add(ventana)
    db_session.flush()

    admin = User(username="admin", name="Admin", role=Role.ADMIN)
    listero = User(
        username="listero", name="Listero", role=Role.VENTANA, ventana_id=ventana.id
    )
    vendedor = User(
        username="vendedor", name="Vendedor", role=Role.VENDEDOR,
        ventana_id=ventana.id,
    )
    loteria = Loteria(name="Tica")
    db_session.add_all([admin, listero, vendedor, loteria])
    db_session.flush()

    base_multiplier = LoteriaMultiplier(
        loteria_id=loteria.id, name="Base", kind=BetType.NUMERO,
        value_x=Decimal("90"),
    )
    reventado_multiplier = LoteriaMultiplier(
        loteria_id=loteria.id, name="Bola roja", kind=BetType.REVENTADO,
        value_x=Decimal("200"),
    )
    db_session.add_all([base_multiplier, reventado_multiplier])
    db_session.commit()

    return SimpleNamespace(
        banca=banca,
        ventana=ventana,
        admin=admin,
        listero=listero,
        vendedor=vendedor,
        loteria=loteria,
        base_multiplier=base_multiplier,
        reventado_multiplier=reventado_multiplier,
    )


@pytest.fixture
def admin_actor(org):
    return Actor(user_id=org.admin.id, role=Role.ADMIN, name="Admin")


@pytest.fixture
def ventana_actor(org):
    return Actor(user_id=org.listero.id, role=Role.VENTANA, ventana_id=org.ventana.id)


@pytest.fixture
def vendedor_actor(org):
    return Actor(
        user_id=org.vendedor.id, role=Role.VENDEDOR, ventana_id=org.ventana.id
    )


@pytest.fixture
def open_sorteo(db_session, org):
    sorteo = Sorteo(
        loteria_id=org.loteria.id,
        name="Tica 13:00",
        scheduled_at=utcnow() - timedelta(minutes=5),
        status=SorteoStatus.OPEN,
        has_winner=False,
    )
    db_session.add(sorteo)
    db_session.commit()
    return sorteo


@pytest.fixture
def admin_headers(org) -> dict:
    return {"X-Actor-Id": str(org.admin.id), "X-Actor-Role": "ADMIN"}
