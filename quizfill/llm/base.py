"""LLM provider protocol."""

from typing import Any, Protocol


class LLMProvider(Protocol):
    """Protocol for LLM backends (OpenAI, Anthropic)."""

    model: str

    def complete(self, prompt: str, *, system: str | None = None, **kwargs: Any) -> str:
        """Return raw text completion for a user prompt and optional system prompt."""
        ...
