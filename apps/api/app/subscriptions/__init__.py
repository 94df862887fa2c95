from app.subscriptions.api import router
from app.subscriptions.errors import NotFoundError, OverlapError, StorageError, SubscriptionError, ValidationError
from app.subscriptions.models import Subscription
from app.subscriptions.repository import (
    InMemorySubscriptionStore,
    ListFilters,
    SqlSubscriptionStore,
    SubscriptionStore,
)
from app.subscriptions.schemas import (
    CreateSubscriptionRequest,
    SubscriptionRead,
    TotalCostResponse,
    UpdateSubscriptionRequest,
)
from app.subscriptions.service import SubscriptionService

__all__ = [
    "router",
    "Subscription",
    "SubscriptionError",
    "ValidationError",
    "NotFoundError",
    "OverlapError",
    "StorageError",
    "ListFilters",
    "SubscriptionStore",
    "SqlSubscriptionStore",
    "InMemorySubscriptionStore",
    "CreateSubscriptionRequest",
    "UpdateSubscriptionRequest",
    "SubscriptionRead",
    "TotalCostResponse",
    "SubscriptionService",
]
