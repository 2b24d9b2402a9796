from fastapi import Request
from relaybot.services.context import BotContext
from relaybot.services.dispatcher import UpdateDispatcher


def get_context(request: Request) -> BotContext:
    return request.app.state.bot


def get_dispatcher(request: Request) -> UpdateDispatcher:
    return request.app.state.dispatcher
