# relaybot/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relaybot.core import config
from relaybot.core.log_setup import setup_logging
from relaybot.api.routers.health import router as health_router
from relaybot.api.routers.pages import router as pages_router
from relaybot.api.routers.webhook import router as webhook_router
from relaybot.providers.openai import OpenAIChatClient
from relaybot.services.chat_service import ChatService
from relaybot.services.commands import CommandHandler
from relaybot.services.context import BotContext, BotSettings
from relaybot.services.dispatcher import UpdateDispatcher
from relaybot.services.telegram import TelegramClient
from relaybot.storage.backend import BackendError, MemoryBackend, ObjectBackend

logger = logging.getLogger(__name__)


def make_backend() -> ObjectBackend:
    if config.STORAGE_BACKEND == "memory":
        logger.warning("using the in-memory backend: responses and files are lost on restart")
        return MemoryBackend()
    if config.STORAGE_BACKEND == "s3":
        from relaybot.storage.s3 import S3Backend
        return S3Backend(config.BUCKET_NAME, endpoint_url=config.AWS_ENDPOINT_URL_S3, region=config.AWS_REGION)
    raise BackendError(f"unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")


def build_context() -> BotContext:
    if not config.BOT_USERNAME:
        logger.warning("BOT_USERNAME is not set; the bot will not respond to mentions in groups")
    return BotContext.build(
        settings=BotSettings.from_config(),
        backend=make_backend(),
        provider=OpenAIChatClient(
            api_key=config.OPENAI_KEY,
            endpoint=config.OPENAI_ENDPOINT,
            model=config.OPENAI_MODEL,
            temperature=config.TEMPERATURE,
            max_tokens=config.MAX_TOKENS,
        ),
        messenger=TelegramClient(config.TELEGRAM_TOKEN, api_base=config.TELEGRAM_API_BASE),
    )


def create_app(ctx: Optional[BotContext] = None, *, start_sweepers: Optional[bool] = None) -> FastAPI:
    """
    Build the FastAPI app around one BotContext.
    Tests pass their own context (memory backend, fake provider/messenger, fake clock).
    """
    setup_logging(config.LOG_LEVEL)
    ctx = ctx or build_context()
    run_sweepers = config.ENABLE_SWEEPERS if start_sweepers is None else start_sweepers

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.LOAD_RESPONSES_ON_START:
            try:
                await ctx.responses.load_all_from_backend()
            except BackendError as e:
                # links published before the restart will still resolve through read-through
                logger.error("failed to load responses from backend: %s", e)
        if run_sweepers:
            ctx.start_sweepers()
        try:
            yield
        finally:
            await ctx.stop_sweepers()
            logger.info("relaybot shut down")

    app = FastAPI(title="Relaybot", version="1.0.0", lifespan=lifespan)

    # response pages and uploaded files are public, read-only resources
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # app.state holds the single BotContext; routers reach it through Depends(get_context)
    chat = ChatService(ctx)
    app.state.bot = ctx
    app.state.chat = chat
    app.state.dispatcher = UpdateDispatcher(ctx, chat, CommandHandler(ctx, chat))

    # Routers (pages last: "/{response_id}" would shadow anything registered after it)
    app.include_router(health_router)
    app.include_router(webhook_router)
    app.include_router(pages_router)

    return app


def run() -> None:
    import uvicorn
    uvicorn.run(create_app(), host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
