from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse, PlainTextResponse

from relaybot.api.deps import get_context
from relaybot.services.context import BotContext
from relaybot.services.rendering import render_index_page, render_response_page

router = APIRouter(tags=["pages"])


@router.get("/", response_class=HTMLResponse)
async def index(ctx: BotContext = Depends(get_context)):
    return HTMLResponse(render_index_page(ctx.settings.bot_username))


# must be registered before "/{response_id}" so file keys are not read as response ids
@router.get("/files/{key:path}", response_class=PlainTextResponse)
async def uploaded_file(key: str, ctx: BotContext = Depends(get_context)):
    content = await ctx.artifacts.read(key)
    if content is None:
        raise HTTPException(status_code=404, detail="File not found or expired.")
    return PlainTextResponse(content)


@router.get("/{response_id}", response_class=HTMLResponse)
async def response_page(response_id: str, ctx: BotContext = Depends(get_context)):
    record = await ctx.responses.record(response_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Response not found or expired.")
    return HTMLResponse(render_response_page(record, ctx.clock()))
