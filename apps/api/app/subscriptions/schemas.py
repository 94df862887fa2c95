from __future__ import annotations

from datetime import date
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from app.subscriptions.periods import format_month_year


class CreateSubscriptionRequest(BaseModel):
    service_name: str = Field(default="", examples=["Yandex Plus"])
    price: int = Field(default=0, examples=[400])
    user_id: str = Field(default="", examples=["60601fee-2bf1-4721-ae6f-7636e79a0cba"])
    start_date: str = Field(default="", examples=["07-2025"])
    end_date: str | None = Field(default=None, examples=["09-2025"])


class UpdateSubscriptionRequest(BaseModel):
    """Sparse patch: ``None`` leaves a field untouched, ``end_date=""`` clears the end date."""

    service_name: str | None = Field(default=None, examples=["Yandex Plus"])
    price: int | None = Field(default=None, examples=[450])
    start_date: str | None = Field(default=None, examples=["08-2025"])
    end_date: str | None = Field(default=None, examples=[""])


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_name: str
    price: int
    user_id: UUID
    start_date: date
    end_date: date | None = None

    @field_serializer("start_date", "end_date", when_used="json")
    def _serialize_month(self, value: date | None) -> str | None:
        return format_month_year(value) if value is not None else None


class TotalCostResponse(BaseModel):
    total: int
