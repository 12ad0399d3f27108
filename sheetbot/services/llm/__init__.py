from sheetbot.services.llm.base import LLMProvider, LLMResponse
from sheetbot.services.llm.groq_provider import GroqProvider

__all__ = ["LLMProvider", "LLMResponse", "GroqProvider"]
