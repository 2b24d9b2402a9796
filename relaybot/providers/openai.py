# sends the conversation to an OpenAI-compatible /chat/completions endpoint with httpx
# and returns the first choice's content; no retries, errors surface as ProviderError

import httpx
from typing import Any, Dict, List, Optional

from relaybot.providers.base import ProviderError
from relaybot.schemas.chat import ChatCompletionRequest, ChatMessage


class OpenAIChatClient:
    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: Optional[httpx.Timeout] = None,
    ) -> None:
        self._api_key = api_key
        self._url = f"{endpoint.rstrip('/')}/chat/completions"
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        # completions for long code questions can take minutes
        self._timeout = timeout or httpx.Timeout(180.0, connect=10.0)

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, messages: List[ChatMessage]) -> str:
        payload = ChatCompletionRequest(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        ).model_dump()
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                r = await client.post(self._url, json=payload, headers=headers)
                if r.status_code != 200:
                    raise ProviderError(f"LLM returned status {r.status_code}: {r.text[:500]}")
                data: Dict[str, Any] = r.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"LLM HTTP error: {e}") from e
        except ValueError as e:
            raise ProviderError(f"LLM returned invalid JSON: {e}") from e

        err = data.get("error")
        if err:
            message = err.get("message") if isinstance(err, dict) else err
            raise ProviderError(f"LLM error: {message}")
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("no choices returned by the LLM")
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str):
            raise ProviderError("unexpected response type from the LLM")
        return content
