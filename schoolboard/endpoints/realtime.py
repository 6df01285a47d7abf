import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from schoolboard.schemas.realtime import ChangeNotification
from schoolboard.schemas.response import APIResponse
from schoolboard.utils import deps
from schoolboard.utils.events import CHANGE_EVENT, event_bus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/changes",
    response_model=APIResponse[Dict[str, Any]],
    dependencies=[Depends(deps.verify_webhook_secret)],
)
async def receive_change(notification: ChangeNotification):
    """Webhook target for the backend's row change notifications."""
    handlers = await event_bus.publish(CHANGE_EVENT, notification.model_dump(mode="json", by_alias=True))
    logger.info(f"Change on {notification.table} delivered to {handlers} handler(s)")
    return APIResponse(
        message="Change accepted",
        data={"domain": notification.domain, "handlers": handlers},
    )
