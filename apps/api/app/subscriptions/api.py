from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import error_response
from app.core.config import get_settings
from app.core.database import get_db
from app.subscriptions.errors import NotFoundError, OverlapError, StorageError, SubscriptionError, ValidationError
from app.subscriptions.repository import SqlSubscriptionStore, SubscriptionStore, get_inmemory_store
from app.subscriptions.schemas import (
    CreateSubscriptionRequest,
    SubscriptionRead,
    TotalCostResponse,
    UpdateSubscriptionRequest,
)
from app.subscriptions.service import SubscriptionService


logger = logging.getLogger("app.subscriptions.api")

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

_STATUS_BY_ERROR: list[tuple[type[SubscriptionError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (OverlapError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def get_subscription_store(db: Session = Depends(get_db)) -> SubscriptionStore:
    if get_settings().subscription_store_backend.lower() == "inmemory":
        return get_inmemory_store()
    return SqlSubscriptionStore(db)


def get_subscription_service(store: SubscriptionStore = Depends(get_subscription_store)) -> SubscriptionService:
    return SubscriptionService(store=store)


def subscription_error_response(request: Request, exc: SubscriptionError, operation: str) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "subscription.storage_failed",
            exc_info=exc,
            extra={"operation": operation, "error": str(exc)},
        )
        return error_response(request, status_code=status_code, code=exc.code, message="internal storage error")

    logger.info(
        "subscription.rejected",
        extra={"operation": operation, "error": exc.message},
    )
    return error_response(
        request,
        status_code=status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@router.post(
    "",
    response_model=SubscriptionRead,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def create_subscription(
    request: Request,
    payload: CreateSubscriptionRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionRead | JSONResponse:
    try:
        return service.create(payload)
    except SubscriptionError as exc:
        return subscription_error_response(request, exc, "create")


@router.get("", response_model=list[SubscriptionRead], response_model_exclude_none=True)
def list_subscriptions(
    request: Request,
    user_id: str | None = Query(default=None),
    service_name: str | None = Query(default=None),
    limit: int = Query(default=0),
    offset: int = Query(default=0),
    service: SubscriptionService = Depends(get_subscription_service),
) -> list[SubscriptionRead] | JSONResponse:
    try:
        return service.list(user_id=user_id, service_name=service_name, limit=limit, offset=offset)
    except SubscriptionError as exc:
        return subscription_error_response(request, exc, "list")


@router.get("/total", response_model=TotalCostResponse)
def total_cost(
    request: Request,
    period_from: str = Query(default="", alias="from"),
    period_to: str = Query(default="", alias="to"),
    user_id: str | None = Query(default=None),
    service_name: str | None = Query(default=None),
    service: SubscriptionService = Depends(get_subscription_service),
) -> TotalCostResponse | JSONResponse:
    try:
        total = service.total_cost(period_from, period_to, user_id=user_id, service_name=service_name)
    except SubscriptionError as exc:
        return subscription_error_response(request, exc, "total_cost")
    return TotalCostResponse(total=total)


@router.get("/{subscription_id}", response_model=SubscriptionRead, response_model_exclude_none=True)
def get_subscription(
    request: Request,
    subscription_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionRead | JSONResponse:
    try:
        return service.get(subscription_id)
    except SubscriptionError as exc:
        return subscription_error_response(request, exc, "get")


@router.patch("/{subscription_id}", response_model=SubscriptionRead, response_model_exclude_none=True)
def patch_subscription(
    request: Request,
    subscription_id: str,
    payload: UpdateSubscriptionRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionRead | JSONResponse:
    try:
        return service.patch(subscription_id, payload)
    except SubscriptionError as exc:
        return subscription_error_response(request, exc, "patch")


@router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_subscription(
    request: Request,
    subscription_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Response:
    try:
        service.delete(subscription_id)
    except SubscriptionError as exc:
        return subscription_error_response(request, exc, "delete")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
