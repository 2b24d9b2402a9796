# centralized configuration loader
# runs load_dotenv() to read .env
# decouples code from environment so tokens, TTLs and limits can change without code change

import os
from typing import FrozenSet
from dotenv import load_dotenv

load_dotenv()


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "y"}


def parse_user_ids(raw: str) -> FrozenSet[int]:
    # "123, 456,abc" -> {123, 456}; malformed items are skipped
    ids = set()
    for part in raw.split(","):
        part = part.strip()
        try:
            ids.add(int(part))
        except ValueError:
            continue
    return frozenset(ids)


# Telegram
TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN", "")
TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")
BOT_USERNAME = os.getenv("BOT_USERNAME", "")

# Web
BASE_URL = os.getenv("BASE_URL", "http://localhost:8080").rstrip("/")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))

# LLM provider (OpenAI-compatible chat completions)
OPENAI_KEY = os.getenv("OPENAI_KEY", "")
OPENAI_ENDPOINT = os.getenv("OPENAI_ENDPOINT", "https://api.openai.com/v1").rstrip("/")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
MAX_TOKENS = int(os.getenv("MAX_TOKENS", "4096"))
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.7"))
SYSTEM_PROMPT = os.getenv("SYSTEM_PROMPT", "You are a helpful assistant.")

# Durable object backend ("s3" or "memory")
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "s3").strip().lower()
BUCKET_NAME = os.getenv("BUCKET_NAME", "")
AWS_ENDPOINT_URL_S3 = os.getenv("AWS_ENDPOINT_URL_S3") or None
AWS_REGION = os.getenv("AWS_REGION") or None

# Retention and limits (minutes)
FILE_RETENTION_MIN = int(os.getenv("FILE_RETENTION_MIN", "240"))
CONVERSATION_TTL_MIN = int(os.getenv("CONVERSATION_TTL_MIN", "30"))
CONVERSATION_MAX_MESSAGES = int(os.getenv("CONVERSATION_MAX_MESSAGES", "0"))  # 0 = unbounded
RATE_LIMIT_WINDOW_MIN = int(os.getenv("RATE_LIMIT_WINDOW_MIN", "10"))
RATE_LIMIT_MAX_MESSAGES = int(os.getenv("RATE_LIMIT_MAX_MESSAGES", "10"))
SWEEP_INTERVAL_MIN = int(os.getenv("SWEEP_INTERVAL_MIN", "10"))

# users who bypass the rate limiter
NO_LIMIT_USERS = parse_user_ids(os.getenv("NO_LIMIT_USERS", ""))

# Behaviour toggles
ENABLE_SWEEPERS = _as_bool(os.getenv("ENABLE_SWEEPERS", "true"))
LOAD_RESPONSES_ON_START = _as_bool(os.getenv("LOAD_RESPONSES_ON_START", "true"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
