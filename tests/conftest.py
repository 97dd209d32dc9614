"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# --- Default env, must be set before the app modules are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./trustdesk_test.db")
os.environ.setdefault("API_KEY", "test-secret-key")
os.environ.setdefault("TRUSTDESK_ENV", "test")

from trustdesk.main import app  # noqa: E402
from trustdesk.db import get_db  # noqa: E402
from trustdesk.models.api_key import ApiKey, ApiScope  # noqa: E402
from trustdesk.models.escrow import PaymentMethod, ReleaseConditionType  # noqa: E402
from trustdesk.models.dispute import DisputeType, PartyRole  # noqa: E402
from trustdesk.schemas.dispute import DisputeCreate  # noqa: E402
from trustdesk.schemas.escrow import AutoReleaseSettings, EscrowCreate, ReleaseConditionCreate  # noqa: E402
from trustdesk.utils.apikey import hash_key  # noqa: E402
from trustdesk.utils.ids import new_object_id  # noqa: E402

DB_PATH = Path("./trustdesk_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh DB file for the session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)


# pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT handling.
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
    join_transaction_mode="create_savepoint",
)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def legacy_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['API_KEY']}"}


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., ApiKey]:
    def _factory(
        name: str,
        key: str,
        scope: ApiScope = ApiScope.user,
        user_id: str | None = None,
        is_active: bool = True,
    ) -> ApiKey:
        api_key = ApiKey(
            name=name,
            prefix="test_" + scope.value,
            key_hash=hash_key(key),
            scope=scope,
            user_id=user_id,
            is_active=is_active,
        )
        db_session.add(api_key)
        db_session.commit()
        db_session.refresh(api_key)
        return api_key

    return _factory


@pytest.fixture
def make_caller(make_api_key: Callable[..., ApiKey]) -> Callable[..., tuple[str, dict[str, str]]]:
    """Create a key bound to a fresh user id; returns ``(user_id, headers)``."""

    def _factory(scope: ApiScope = ApiScope.user, user_id: str | None = None) -> tuple[str, dict[str, str]]:
        user_id = user_id or new_object_id()
        token = f"{scope.value}-{uuid4().hex}"
        make_api_key(name=f"{scope.value}-{uuid4().hex}", key=token, scope=scope, user_id=user_id)
        return user_id, {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def admin_caller(make_caller) -> tuple[str, dict[str, str]]:
    return make_caller(ApiScope.admin)


@pytest.fixture
def support_caller(make_caller) -> tuple[str, dict[str, str]]:
    return make_caller(ApiScope.support)


@pytest.fixture
def escrow_payload() -> Callable[..., EscrowCreate]:
    """Factory for a valid ``EscrowCreate`` between two fresh users."""

    def _factory(
        *,
        amount: str = "500.00",
        client_id: str | None = None,
        freelancer_id: str | None = None,
        conditions: int = 0,
        require_milestone_completion: bool = True,
        time_threshold: int | None = None,
    ) -> EscrowCreate:
        return EscrowCreate(
            job_id=new_object_id(),
            client_id=client_id or new_object_id(),
            freelancer_id=freelancer_id or new_object_id(),
            amount=Decimal(amount),
            currency="USD",
            payment_gateway_id=new_object_id(),
            payment_method=PaymentMethod.CREDIT_CARD,
            release_conditions=[
                ReleaseConditionCreate(type=ReleaseConditionType.MILESTONE, description=f"Milestone {i + 1}")
                for i in range(conditions)
            ],
            auto_release=AutoReleaseSettings(
                time_threshold=time_threshold,
                require_milestone_completion=require_milestone_completion,
            ),
        )

    return _factory


@pytest.fixture
def dispute_payload() -> Callable[..., DisputeCreate]:
    def _factory(
        respondent_id: str,
        *,
        initiator_role: PartyRole = PartyRole.CLIENT,
        amount: str | None = "150.00",
        **overrides,
    ) -> DisputeCreate:
        data = {
            "respondent_id": respondent_id,
            "initiator_role": initiator_role,
            "job_id": new_object_id(),
            "type": DisputeType.DELIVERY,
            "amount_disputed": Decimal(amount) if amount is not None else None,
            "title": "Work not delivered",
            "description": "The freelancer missed the agreed delivery date.",
            "desired_outcome": "Refund of the milestone",
        }
        data.update(overrides)
        return DisputeCreate(**data)

    return _factory

