from fastapi import APIRouter, Depends

from relaybot.api.deps import get_context
from relaybot.services.context import BotContext

router = APIRouter(tags=["meta"])

@router.get("/health")
def health(ctx: BotContext = Depends(get_context)):
    # counts are in-memory only; nothing here touches the backend
    return {
        "status": "ok",
        "responses": len(ctx.responses.store),
        "conversations": len(ctx.conversations.store),
    }
