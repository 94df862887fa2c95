from __future__ import annotations

import itertools
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from threading import Lock
from typing import Any, Protocol

from opentelemetry import trace
from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.otel import traced
from app.subscriptions.errors import OverlapError, StorageError
from app.subscriptions.models import Subscription, utcnow
from app.subscriptions.periods import coalesce_end, intervals_overlap


tracer = trace.get_tracer("app.subscriptions.repository")

OVERLAP_CONSTRAINT = "ex_subscriptions_no_overlap"
UPDATABLE_FIELDS = frozenset({"service_name", "price", "start_date", "end_date"})


@dataclass(slots=True)
class ListFilters:
    user_id: uuid.UUID | None = None
    service_name: str = ""
    limit: int = 20
    offset: int = 0


class SubscriptionStore(Protocol):
    """Persistence operations the subscription service depends on."""

    def create(self, subscription: Subscription) -> Subscription:
        ...

    def find_by_id(self, subscription_id: uuid.UUID) -> Subscription | None:
        ...

    def list(self, filters: ListFilters) -> list[Subscription]:
        ...

    def delete(self, subscription_id: uuid.UUID) -> bool:
        ...

    def update(self, subscription_id: uuid.UUID, fields: dict[str, Any]) -> Subscription | None:
        ...

    def find_active_in_period(self, period_from: date, period_to: date, filters: ListFilters) -> list[Subscription]:
        ...

    def exists_overlap(
        self,
        user_id: uuid.UUID,
        service_name: str,
        start: date,
        end: date | None = None,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        ...


class SqlSubscriptionStore:
    """SQLAlchemy-backed store bound to one request session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, subscription: Subscription) -> Subscription:
        with self._operation("create", subscription_id=str(subscription.id)):
            self.session.add(subscription)
            self.session.commit()
            self.session.refresh(subscription)
            return subscription

    def find_by_id(self, subscription_id: uuid.UUID) -> Subscription | None:
        with self._operation("find_by_id", subscription_id=str(subscription_id)):
            return self.session.scalar(select(Subscription).where(Subscription.id == subscription_id))

    def list(self, filters: ListFilters) -> list[Subscription]:
        with self._operation("list"):
            stmt = self._apply_filters(select(Subscription), filters)
            stmt = (
                stmt.order_by(Subscription.start_date.desc(), Subscription.created_at.desc())
                .limit(filters.limit)
                .offset(filters.offset)
            )
            return list(self.session.scalars(stmt).all())

    def delete(self, subscription_id: uuid.UUID) -> bool:
        with self._operation("delete", subscription_id=str(subscription_id)):
            result = self.session.execute(delete(Subscription).where(Subscription.id == subscription_id))
            self.session.commit()
            return result.rowcount > 0

    def update(self, subscription_id: uuid.UUID, fields: dict[str, Any]) -> Subscription | None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise StorageError(f"fields are not updatable: {', '.join(sorted(unknown))}")

        with self._operation("update", subscription_id=str(subscription_id)):
            result = self.session.execute(
                update(Subscription).where(Subscription.id == subscription_id).values(**fields)
            )
            if result.rowcount == 0:
                self.session.rollback()
                return None
            self.session.commit()
            return self.session.scalar(
                select(Subscription).where(Subscription.id == subscription_id).execution_options(populate_existing=True)
            )

    def find_active_in_period(self, period_from: date, period_to: date, filters: ListFilters) -> list[Subscription]:
        with self._operation("find_active_in_period"):
            stmt = self._apply_filters(select(Subscription), filters).where(
                Subscription.start_date <= period_to,
                or_(Subscription.end_date.is_(None), Subscription.end_date >= period_from),
            )
            return list(self.session.scalars(stmt).all())

    def exists_overlap(
        self,
        user_id: uuid.UUID,
        service_name: str,
        start: date,
        end: date | None = None,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        with self._operation("exists_overlap", user_id=str(user_id)):
            stmt = (
                select(func.count())
                .select_from(Subscription)
                .where(
                    Subscription.user_id == user_id,
                    func.lower(Subscription.service_name) == service_name.lower(),
                    Subscription.start_date <= coalesce_end(end),
                    or_(Subscription.end_date.is_(None), Subscription.end_date >= start),
                )
            )
            if exclude_id is not None:
                stmt = stmt.where(Subscription.id != exclude_id)
            return (self.session.scalar(stmt) or 0) > 0

    @staticmethod
    def _apply_filters(stmt: Select[Any], filters: ListFilters) -> Select[Any]:
        if filters.user_id is not None:
            stmt = stmt.where(Subscription.user_id == filters.user_id)
        if filters.service_name:
            stmt = stmt.where(Subscription.service_name.icontains(filters.service_name, autoescape=True))
        return stmt

    @contextmanager
    def _operation(self, name: str, **attributes: str) -> Iterator[None]:
        with traced(tracer, f"subscriptions.store.{name}", **attributes):
            try:
                yield
            except IntegrityError as exc:
                self.session.rollback()
                if OVERLAP_CONSTRAINT in str(exc.orig):
                    raise OverlapError("subscription period overlaps an existing subscription") from exc
                raise StorageError(f"subscription {name} violated a database constraint", details=str(exc.orig)[:500]) from exc
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StorageError(f"subscription {name} failed") from exc


class InMemorySubscriptionStore:
    """Process-local store, check-and-insert runs under a single lock."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._rows: dict[uuid.UUID, Subscription] = {}
        self._sequence: dict[uuid.UUID, int] = {}
        self._counter = itertools.count()

    def create(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.id is None:
                subscription.id = uuid.uuid4()
            if self._has_overlap(
                subscription.user_id,
                subscription.service_name,
                subscription.start_date,
                subscription.end_date,
                exclude_id=None,
            ):
                raise OverlapError("subscription period overlaps an existing subscription")
            now = utcnow()
            subscription.created_at = now
            subscription.updated_at = now
            self._rows[subscription.id] = subscription
            self._sequence[subscription.id] = next(self._counter)
            return subscription

    def find_by_id(self, subscription_id: uuid.UUID) -> Subscription | None:
        with self._lock:
            return self._rows.get(subscription_id)

    def list(self, filters: ListFilters) -> list[Subscription]:
        with self._lock:
            rows = sorted(
                self._filtered(filters),
                key=lambda row: (row.start_date, row.created_at, self._sequence[row.id]),
                reverse=True,
            )
            return rows[filters.offset : filters.offset + filters.limit]

    def delete(self, subscription_id: uuid.UUID) -> bool:
        with self._lock:
            self._sequence.pop(subscription_id, None)
            return self._rows.pop(subscription_id, None) is not None

    def update(self, subscription_id: uuid.UUID, fields: dict[str, Any]) -> Subscription | None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise StorageError(f"fields are not updatable: {', '.join(sorted(unknown))}")

        with self._lock:
            row = self._rows.get(subscription_id)
            if row is None:
                return None
            if self._has_overlap(
                row.user_id,
                fields.get("service_name", row.service_name),
                fields.get("start_date", row.start_date),
                fields["end_date"] if "end_date" in fields else row.end_date,
                exclude_id=row.id,
            ):
                raise OverlapError("subscription period overlaps an existing subscription")
            for field_name, value in fields.items():
                setattr(row, field_name, value)
            row.updated_at = utcnow()
            return row

    def find_active_in_period(self, period_from: date, period_to: date, filters: ListFilters) -> list[Subscription]:
        with self._lock:
            return [
                row
                for row in self._filtered(filters)
                if row.start_date <= period_to and (row.end_date is None or row.end_date >= period_from)
            ]

    def exists_overlap(
        self,
        user_id: uuid.UUID,
        service_name: str,
        start: date,
        end: date | None = None,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        with self._lock:
            return self._has_overlap(user_id, service_name, start, end, exclude_id=exclude_id)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()
            self._sequence.clear()

    def _has_overlap(
        self,
        user_id: uuid.UUID,
        service_name: str,
        start: date,
        end: date | None,
        *,
        exclude_id: uuid.UUID | None,
    ) -> bool:
        key = service_name.lower()
        return any(
            row.user_id == user_id
            and row.service_name.lower() == key
            and row.id != exclude_id
            and intervals_overlap(row.start_date, row.end_date, start, end)
            for row in self._rows.values()
        )

    def _filtered(self, filters: ListFilters) -> list[Subscription]:
        needle = filters.service_name.lower()
        return [
            row
            for row in self._rows.values()
            if (filters.user_id is None or row.user_id == filters.user_id)
            and (not needle or needle in row.service_name.lower())
        ]


_inmemory_store = InMemorySubscriptionStore()


def get_inmemory_store() -> InMemorySubscriptionStore:
    return _inmemory_store
