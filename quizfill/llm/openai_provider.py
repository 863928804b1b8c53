"""OpenAI chat completion provider."""

from typing import Any

from openai import OpenAI


class OpenAIProvider:
    """OpenAI chat completion with optional system prompt and JSON response format."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
    ):
        self._client = OpenAI(api_key=api_key)
        self.model = model

    def complete(self, prompt: str, *, system: str | None = None, **kwargs: Any) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        params: dict[str, Any] = {}
        if kwargs.get("max_tokens"):
            params["max_completion_tokens"] = kwargs["max_tokens"]
        if kwargs.get("temperature") is not None:
            params["temperature"] = kwargs["temperature"]
        if kwargs.get("timeout"):
            params["timeout"] = kwargs["timeout"]
        if kwargs.get("json_mode"):
            params["response_format"] = {"type": "json_object"}

        # SDK errors (RateLimitError, APIStatusError) propagate; the generator classifies them
        response = self._client.chat.completions.create(
            model=kwargs.get("model") or self.model,
            messages=messages,
            **params,
        )
        return response.choices[0].message.content or ""
