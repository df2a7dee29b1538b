from fastapi import Depends

from fulfillment.core.config import Settings, get_settings
from fulfillment.services.coordinator import FulfillmentCoordinator
from fulfillment.services.repository import get_repository


def get_coordinator(
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> FulfillmentCoordinator:
    return FulfillmentCoordinator(repository, reactivation_days=settings.posting_reactivation_days)
