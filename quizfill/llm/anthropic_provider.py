"""Anthropic messages provider."""

from typing import Any

from anthropic import Anthropic


class AnthropicProvider:
    """Anthropic chat completion with optional system prompt."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
    ):
        self._client = Anthropic(api_key=api_key)
        self.model = model

    def complete(self, prompt: str, *, system: str | None = None, **kwargs: Any) -> str:
        params: dict[str, Any] = {}
        if system:
            params["system"] = system
        if kwargs.get("temperature") is not None:
            params["temperature"] = kwargs["temperature"]
        if kwargs.get("timeout"):
            params["timeout"] = kwargs["timeout"]
        response = self._client.messages.create(
            model=kwargs.get("model") or self.model,
            max_tokens=kwargs.get("max_tokens") or 4096,
            messages=[{"role": "user", "content": prompt}],
            **params,
        )
        return response.content[0].text if response.content else ""
