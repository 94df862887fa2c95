from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any

from app import events
from app.metrics import observe_overlap_conflict, observe_subscription_operation, observe_total_cost_window
from app.subscriptions.errors import NotFoundError, OverlapError, SubscriptionError, ValidationError
from app.subscriptions.models import Subscription
from app.subscriptions.periods import max_date, min_date, months_inclusive, parse_month_year
from app.subscriptions.repository import ListFilters, SubscriptionStore
from app.subscriptions.schemas import CreateSubscriptionRequest, SubscriptionRead, UpdateSubscriptionRequest


logger = logging.getLogger("app.subscriptions")

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100

_OVERLAP_MESSAGE = "subscription period overlaps an existing subscription for this user and service"


def normalize_page(limit: int, offset: int) -> tuple[int, int]:
    if limit <= 0:
        limit = DEFAULT_LIST_LIMIT
    if limit > MAX_LIST_LIMIT:
        limit = MAX_LIST_LIMIT
    if offset < 0:
        offset = 0
    return limit, offset


@contextmanager
def _observed(operation: str) -> Iterator[None]:
    try:
        yield
    except SubscriptionError as exc:
        if isinstance(exc, OverlapError):
            observe_overlap_conflict(operation)
        observe_subscription_operation(operation, exc.code)
        raise
    observe_subscription_operation(operation, "ok")


@dataclass(slots=True)
class SubscriptionService:
    store: SubscriptionStore

    def create(self, payload: CreateSubscriptionRequest) -> SubscriptionRead:
        with _observed("create"):
            if payload.service_name == "":
                raise ValidationError("service_name is required")
            if payload.price <= 0:
                raise ValidationError("price must be positive integer")
            user_id = self._parse_uuid(payload.user_id, "user_id")
            start = self._parse_month(payload.start_date, "start_date")

            end: date | None = None
            if payload.end_date:
                end = self._parse_month(payload.end_date, "end_date")
                if end < start:
                    raise ValidationError("end_date must not be before start_date")

            subscription = Subscription(
                id=uuid.uuid4(),
                service_name=payload.service_name,
                price=payload.price,
                user_id=user_id,
                start_date=start,
                end_date=end,
            )

            if self.store.exists_overlap(user_id, subscription.service_name, start, end, None):
                raise OverlapError(_OVERLAP_MESSAGE)

            created = self.store.create(subscription)
            self._log("subscription.created", "create", created)
            self._emit("subscription.created", created)
            return self._to_read(created)

    def get(self, subscription_id: str) -> SubscriptionRead:
        with _observed("get"):
            parsed_id = self._parse_uuid(subscription_id, "id")
            return self._to_read(self._get_existing(parsed_id))

    def list(
        self,
        user_id: str | None = None,
        service_name: str | None = None,
        limit: int = 0,
        offset: int = 0,
    ) -> list[SubscriptionRead]:
        with _observed("list"):
            limit, offset = normalize_page(limit, offset)
            filters = ListFilters(
                user_id=self._parse_optional_user(user_id),
                service_name=service_name or "",
                limit=limit,
                offset=offset,
            )
            return [self._to_read(row) for row in self.store.list(filters)]

    def delete(self, subscription_id: str) -> None:
        with _observed("delete"):
            parsed_id = self._parse_uuid(subscription_id, "id")
            if not self.store.delete(parsed_id):
                raise NotFoundError("subscription not found")
            logger.info(
                "subscription.deleted",
                extra={"subscription_id": str(parsed_id), "operation": "delete"},
            )
            events.publish({"event_type": "subscription.deleted", "subscription_id": str(parsed_id)})

    def patch(self, subscription_id: str, payload: UpdateSubscriptionRequest) -> SubscriptionRead:
        with _observed("patch"):
            parsed_id = self._parse_uuid(subscription_id, "id")
            fields: dict[str, Any] = {}

            if payload.service_name is not None:
                if payload.service_name == "":
                    raise ValidationError("service_name cannot be empty")
                fields["service_name"] = payload.service_name

            if payload.price is not None:
                if payload.price <= 0:
                    raise ValidationError("price must be positive integer")
                fields["price"] = payload.price

            if payload.start_date is not None:
                fields["start_date"] = self._parse_month(payload.start_date, "start_date")

            if payload.end_date is not None:
                if payload.end_date == "":
                    fields["end_date"] = None
                else:
                    end = self._parse_month(payload.end_date, "end_date", hint="MM-YYYY, YYYY-MM or empty to clear")
                    new_start = fields.get("start_date")
                    if new_start is not None and end < new_start:
                        raise ValidationError("end_date must not be before start_date")
                    fields["end_date"] = end

            if not fields:
                raise ValidationError("no fields to update")

            existing = self._get_existing(parsed_id)
            service_name = fields.get("service_name", existing.service_name)
            start = fields.get("start_date", existing.start_date)
            end = fields["end_date"] if "end_date" in fields else existing.end_date
            if end is not None and end < start:
                raise ValidationError("end_date must not be before start_date")

            if self.store.exists_overlap(existing.user_id, service_name, start, end, parsed_id):
                raise OverlapError(_OVERLAP_MESSAGE)

            updated = self.store.update(parsed_id, fields)
            if updated is None:
                raise NotFoundError("subscription not found")
            self._log("subscription.updated", "patch", updated)
            self._emit("subscription.updated", updated, changed_fields=sorted(fields))
            return self._to_read(updated)

    def total_cost(
        self,
        period_from: str,
        period_to: str,
        user_id: str | None = None,
        service_name: str | None = None,
    ) -> int:
        with _observed("total_cost"):
            start = self._parse_month(period_from, "from")
            end = self._parse_month(period_to, "to")
            if end < start:
                raise ValidationError("to must be >= from")

            filters = ListFilters(
                user_id=self._parse_optional_user(user_id),
                service_name=service_name or "",
                limit=0,
                offset=0,
            )
            rows = self.store.find_active_in_period(start, end, filters)
            observe_total_cost_window(months_inclusive(start, end))
            return sum(self.prorated_cost(row, start, end) for row in rows)

    @staticmethod
    def prorated_cost(subscription: Subscription, period_from: date, period_to: date) -> int:
        overlap_start = max_date(subscription.start_date, period_from)
        overlap_end = period_to if subscription.end_date is None else min_date(subscription.end_date, period_to)
        if overlap_end < overlap_start:
            return 0
        return months_inclusive(overlap_start, overlap_end) * subscription.price

    def _get_existing(self, subscription_id: uuid.UUID) -> Subscription:
        subscription = self.store.find_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError("subscription not found")
        return subscription

    def _parse_optional_user(self, user_id: str | None) -> uuid.UUID | None:
        if not user_id:
            return None
        return self._parse_uuid(user_id, "user_id")

    @staticmethod
    def _parse_uuid(value: str, field_name: str) -> uuid.UUID:
        try:
            return uuid.UUID(value)
        except (TypeError, ValueError, AttributeError) as exc:
            raise ValidationError(f"{field_name} must be UUID") from exc

    @staticmethod
    def _parse_month(value: str, field_name: str, *, hint: str = "MM-YYYY or YYYY-MM") -> date:
        try:
            return parse_month_year(value)
        except ValidationError as exc:
            raise ValidationError(f"{field_name} format must be {hint}", details=exc.message) from exc

    @staticmethod
    def _log(message: str, operation: str, subscription: Subscription) -> None:
        logger.info(
            message,
            extra={
                "subscription_id": str(subscription.id),
                "user_id": str(subscription.user_id),
                "service_name": subscription.service_name,
                "operation": operation,
            },
        )

    @staticmethod
    def _emit(event_type: str, subscription: Subscription, **extra: Any) -> None:
        events.publish(
            {
                "event_type": event_type,
                "subscription_id": str(subscription.id),
                "user_id": str(subscription.user_id),
                "service_name": subscription.service_name,
                **extra,
            }
        )

    @staticmethod
    def _to_read(subscription: Subscription) -> SubscriptionRead:
        return SubscriptionRead.model_validate(subscription)
