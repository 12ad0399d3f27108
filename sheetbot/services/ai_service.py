from typing import List, Optional

from sheetbot.logging_config import get_logger
from sheetbot.services.content_source import ContentSource
from sheetbot.services.conversation_log import ConversationLog
from sheetbot.services.errors import ServiceError
from sheetbot.services.llm.base import LLMProvider

logger = get_logger("ai_service")

DEFAULT_SYSTEM_PROMPT = "Eres un asistente comercial amable. Responde en español, de forma breve y clara."


class AIResponder:
    """AI fallback: answers free text using the sheet prompt and recent history."""

    def __init__(
        self,
        provider: LLMProvider,
        conversation_log: ConversationLog,
        content_source: Optional[ContentSource] = None,
        default_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_limit: int = 10,
    ):
        self.provider = provider
        self.conversation_log = conversation_log
        self.content_source = content_source
        self.default_prompt = default_prompt
        self.history_limit = history_limit

    async def _system_prompt(self) -> str:
        if self.content_source is None:
            return self.default_prompt
        try:
            prompt = await self.content_source.get_prompt()
        except ServiceError as e:
            logger.warning(f"Prompt unavailable, using default: {e}")
            return self.default_prompt
        return prompt or self.default_prompt

    async def _history(self, user_id: str) -> List[dict]:
        try:
            return await self.conversation_log.history(user_id, limit=self.history_limit)
        except ServiceError as e:
            logger.warning(f"History unavailable for {user_id}: {e}")
            return []

    async def complete(self, text: str, user_id: str) -> str:
        """Return the AI answer. Raises ServiceError on any provider failure."""
        messages = [{"role": "system", "content": await self._system_prompt()}]
        messages.extend(await self._history(user_id))
        messages.append({"role": "user", "content": text})

        try:
            response = await self.provider.generate(messages)
        except Exception as e:
            logger.error(f"AI completion failed for {user_id}: {e}")
            raise ServiceError("ai", str(e)) from e

        answer = (response.content or "").strip()
        if not answer:
            raise ServiceError("ai", "empty completion")

        for role, content in (("user", text), ("assistant", answer)):
            try:
                await self.conversation_log.append(user_id, role, content)
            except ServiceError as e:
                logger.warning(f"Could not record AI exchange for {user_id}: {e}")
        return answer
