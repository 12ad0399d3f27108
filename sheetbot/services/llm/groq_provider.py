from typing import List, Optional

import httpx

from sheetbot.logging_config import get_logger
from sheetbot.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.groq")


class GroqProvider(LLMProvider):
    """Groq chat completions through its OpenAI-compatible API."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "llama-3.1-8b-instant",
        base_url: str = "https://api.groq.com/openai/v1",
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.completions_url = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"Groq request: model={model}, messages_count={len(messages)}")

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                self.completions_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

        if response.status_code != 200:
            logger.error(f"Groq error: status={response.status_code}, body={response.text[:300]}")
            raise Exception(f"Groq API error: {response.status_code} - {response.text[:300]}")

        data = response.json()
        content = ""
        choices = data.get("choices") or []
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
        logger.debug(f"Groq content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))
