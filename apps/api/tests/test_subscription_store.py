from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.subscriptions.errors import OverlapError, StorageError
from app.subscriptions.models import Subscription
from app.subscriptions.repository import (
    InMemorySubscriptionStore,
    ListFilters,
    SqlSubscriptionStore,
    SubscriptionStore,
)


USER_ID = uuid.UUID("60601fee-2bf1-4721-ae6f-7636e79a0cba")


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(params=["sql", "inmemory"])
def store(request: pytest.FixtureRequest, db_session: Session) -> SubscriptionStore:
    if request.param == "sql":
        return SqlSubscriptionStore(db_session)
    return InMemorySubscriptionStore()


def _subscription(
    *,
    service_name: str = "Netflix",
    price: int = 300,
    user_id: uuid.UUID = USER_ID,
    start_date: date = date(2025, 1, 1),
    end_date: date | None = None,
) -> Subscription:
    return Subscription(
        id=uuid.uuid4(),
        service_name=service_name,
        price=price,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )


def test_create_and_find_by_id(store: SubscriptionStore) -> None:
    created = store.create(_subscription(end_date=date(2025, 3, 1)))

    found = store.find_by_id(created.id)
    assert found is not None
    assert found.service_name == "Netflix"
    assert found.end_date == date(2025, 3, 1)
    assert found.created_at is not None

    assert store.find_by_id(uuid.uuid4()) is None


def test_list_applies_filters_and_window(store: SubscriptionStore) -> None:
    other_user = uuid.uuid4()
    store.create(_subscription(service_name="Netflix", start_date=date(2025, 1, 1)))
    store.create(_subscription(service_name="Spotify", start_date=date(2025, 2, 1)))
    store.create(_subscription(service_name="Netflix Kids", user_id=other_user, start_date=date(2025, 3, 1)))

    assert [row.service_name for row in store.list(ListFilters(limit=10))] == ["Netflix Kids", "Spotify", "Netflix"]
    assert [row.service_name for row in store.list(ListFilters(user_id=USER_ID, limit=10))] == ["Spotify", "Netflix"]
    assert [row.service_name for row in store.list(ListFilters(service_name="NETFLIX", limit=10))] == [
        "Netflix Kids",
        "Netflix",
    ]
    assert [row.service_name for row in store.list(ListFilters(limit=1, offset=1))] == ["Spotify"]


def test_update_changes_only_given_fields(store: SubscriptionStore) -> None:
    created = store.create(_subscription(end_date=date(2025, 6, 1)))

    updated = store.update(created.id, {"price": 500, "end_date": None})

    assert updated is not None
    assert updated.price == 500
    assert updated.end_date is None
    assert updated.service_name == "Netflix"
    assert store.update(uuid.uuid4(), {"price": 1}) is None


def test_update_refuses_unknown_columns(store: SubscriptionStore) -> None:
    created = store.create(_subscription())

    with pytest.raises(StorageError):
        store.update(created.id, {"user_id": uuid.uuid4()})


def test_delete_reports_whether_row_existed(store: SubscriptionStore) -> None:
    created = store.create(_subscription())

    assert store.delete(created.id) is True
    assert store.delete(created.id) is False
    assert store.find_by_id(created.id) is None


def test_find_active_in_period_includes_boundary_months(store: SubscriptionStore) -> None:
    store.create(_subscription(service_name="Ends In Jan", start_date=date(2024, 6, 1), end_date=date(2025, 1, 1)))
    store.create(_subscription(service_name="Starts In Dec", start_date=date(2025, 12, 1)))
    store.create(_subscription(service_name="Before", start_date=date(2024, 1, 1), end_date=date(2024, 12, 1)))
    store.create(_subscription(service_name="After", start_date=date(2026, 1, 1)))

    rows = store.find_active_in_period(date(2025, 1, 1), date(2025, 12, 1), ListFilters(limit=0))

    assert sorted(row.service_name for row in rows) == ["Ends In Jan", "Starts In Dec"]


def test_exists_overlap_matches_user_and_service_case_insensitively(store: SubscriptionStore) -> None:
    existing = store.create(_subscription(start_date=date(2025, 1, 1), end_date=date(2025, 6, 1)))

    assert store.exists_overlap(USER_ID, "NETFLIX", date(2025, 6, 1), None)
    assert not store.exists_overlap(USER_ID, "Netflix", date(2025, 7, 1), None)
    assert not store.exists_overlap(uuid.uuid4(), "Netflix", date(2025, 1, 1), None)
    assert not store.exists_overlap(USER_ID, "Spotify", date(2025, 1, 1), None)
    assert not store.exists_overlap(USER_ID, "Netflix", date(2025, 2, 1), date(2025, 3, 1), existing.id)


def test_inmemory_store_rechecks_overlap_on_write() -> None:
    store = InMemorySubscriptionStore()
    store.create(_subscription(start_date=date(2025, 1, 1)))
    later = store.create(_subscription(service_name="Spotify", start_date=date(2025, 1, 1)))

    with pytest.raises(OverlapError):
        store.create(_subscription(service_name="netflix", start_date=date(2030, 1, 1)))

    with pytest.raises(OverlapError):
        store.update(later.id, {"service_name": "Netflix"})


def test_sql_store_maps_overlap_constraint_violation(db_session: Session) -> None:
    db_session.execute(
        text(
            """
            CREATE TRIGGER ex_subscriptions_no_overlap
            BEFORE INSERT ON subscriptions
            WHEN EXISTS (
                SELECT 1 FROM subscriptions
                WHERE user_id = NEW.user_id
                  AND lower(service_name) = lower(NEW.service_name)
                  AND start_date <= coalesce(NEW.end_date, '9999-12-01')
                  AND coalesce(end_date, '9999-12-01') >= NEW.start_date
            )
            BEGIN
                SELECT RAISE(ABORT, 'ex_subscriptions_no_overlap');
            END
            """
        )
    )
    db_session.commit()
    store = SqlSubscriptionStore(db_session)
    store.create(_subscription(start_date=date(2025, 1, 1)))

    with pytest.raises(OverlapError):
        store.create(_subscription(start_date=date(2025, 5, 1)))

    assert len(store.list(ListFilters(limit=10))) == 1


def test_sql_store_wraps_other_integrity_errors(db_session: Session) -> None:
    store = SqlSubscriptionStore(db_session)

    with pytest.raises(StorageError) as exc_info:
        store.create(_subscription(price=0))

    assert not isinstance(exc_info.value, OverlapError)
    assert store.list(ListFilters(limit=10)) == []
