import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError

from relaybot.api.deps import get_dispatcher
from relaybot.schemas.telegram import TelegramUpdate
from relaybot.services.dispatcher import UpdateDispatcher

router = APIRouter(tags=["telegram"])
logger = logging.getLogger(__name__)


# Telegram delivers every update as a POST to the webhook URL.
# the update is acknowledged immediately and dispatched after the response is sent
@router.post("/")
async def telegram_webhook(
    request: Request,
    background: BackgroundTasks,
    dispatcher: UpdateDispatcher = Depends(get_dispatcher),
):
    body = await request.body()
    try:
        update = TelegramUpdate.model_validate_json(body)
    except ValidationError as e:
        logger.warning("failed to decode update: %s", e.errors(include_url=False)[:1])
        raise HTTPException(status_code=400, detail="Bad request")

    background.add_task(dispatcher.dispatch, update)
    return {"ok": True}
