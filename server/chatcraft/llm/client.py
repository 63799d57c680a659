from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI

PROVIDER_BASE_URLS: dict[str, str | None] = {
    "openai": None,
    "ollama": "http://localhost:11434/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "andy": "https://andy.mindcraft-ce.com/api/v1",
    "pollinations": "https://text.pollinations.ai/openai",
}


def _is_enabled(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class LLMClient:
    provider: str
    model: str
    api_key: str | None
    base_url: str | None = None
    timeout_sec: float = 30.0
    max_output_tokens: int = 256
    max_retries: int = 0
    debug: bool = False
    _sdk_client: AsyncOpenAI | None = None

    @classmethod
    def for_provider(
        cls,
        provider: str,
        model: str,
        api_key: str | None,
        max_output_tokens: int = 256,
    ) -> "LLMClient":
        base_url = os.getenv("LLM_BASE_URL", "").strip() or PROVIDER_BASE_URLS.get(provider)

        try:
            timeout_sec = float(os.getenv("LLM_TIMEOUT_SEC", "30"))
        except ValueError:
            timeout_sec = 30.0
        timeout_sec = max(1.0, min(timeout_sec, 180.0))

        try:
            max_retries = int(os.getenv("LLM_MAX_RETRIES", "0"))
        except ValueError:
            max_retries = 0
        max_retries = max(0, min(max_retries, 5))

        return cls(
            provider=provider,
            model=model,
            api_key=api_key,
            base_url=base_url.rstrip("/") if base_url else None,
            timeout_sec=timeout_sec,
            max_output_tokens=max(16, min(max_output_tokens, 4096)),
            max_retries=max_retries,
            debug=_is_enabled(os.getenv("LLM_DEBUG", "0")),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.model) and bool(self.api_key)

    async def complete(self, messages: list[dict[str, str]]) -> str | None:
        """Return the assistant text for ``messages`` or ``None`` when the call fails."""
        if not self.enabled:
            self._debug("LLM request skipped: client disabled (missing model or api key)")
            return None

        try:
            response = await self._get_sdk_client().chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_output_tokens,
            )
        except Exception as exc:
            logging.getLogger("chatcraft.llm.client").warning(
                "LLM chat.completions error type=%s detail=%r", type(exc).__name__, exc
            )
            return None

        try:
            as_dict = response.model_dump()
        except Exception:
            as_dict = {"response_repr": repr(response)}
        self._debug(
            "LLM chat.completions response "
            f"prefix={json.dumps(as_dict, ensure_ascii=False, default=str)[:280]!r}"
        )

        content = self._extract_message_content(response, as_dict)
        if not content:
            self._debug("LLM response has no assistant text content")
        return content

    def _get_sdk_client(self) -> AsyncOpenAI:
        if self._sdk_client is None:
            self._sdk_client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout_sec,
                max_retries=self.max_retries,
            )
        return self._sdk_client

    def _debug(self, message: str) -> None:
        if self.debug:
            logging.getLogger("chatcraft.llm.client").warning(message)

    def _extract_message_content(self, response_obj: Any, as_dict: dict[str, Any]) -> str | None:
        choices = getattr(response_obj, "choices", None)
        if choices:
            content = getattr(getattr(choices[0], "message", None), "content", None)
            if isinstance(content, str):
                return content.strip() or None

        # some OpenAI-compatible providers return content as a list of text parts
        choices = as_dict.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, str):
            return content.strip() or None
        if isinstance(content, list):
            merged = "".join(
                part["text"] for part in content if isinstance(part, dict) and isinstance(part.get("text"), str)
            )
            return merged.strip() or None
        return None
