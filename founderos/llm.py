"""Optional remote completion capability (Anthropic or OpenAI).

Nothing in FounderOS requires a provider: every caller holds a rule-based
path and treats :class:`LLMCallError` as the signal to use it.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from founderos.config import get_settings

log = logging.getLogger(__name__)

RULE_BASED = "rule-based"


class LLMCallError(Exception):
    """LLM call failed or returned unparseable output."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class LLMClient:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def call(self, system: str, user: str, response_format: str = "json") -> dict[str, Any] | str:
        """Send system+user message to the LLM.

        Returns parsed JSON for ``response_format="json"``, the raw text for
        ``"text"``.
        """
        want_json = response_format == "json"
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=2048,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
                text = response.content[0].text.strip()
                if want_json:
                    m = re.search(r'```(?:json)?\s*(\{.*\})\s*```', text, re.DOTALL)
                    if m:
                        text = m.group(1)
            else:
                kwargs: dict[str, Any] = {}
                if want_json:
                    kwargs["response_format"] = {"type": "json_object"}
                response = await self._client.chat.completions.create(
                    model=self.model,
                    max_tokens=2048,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    **kwargs,
                )
                text = response.choices[0].message.content or ("{}" if want_json else "")
        except LLMCallError:
            raise
        except Exception as exc:
            raise LLMCallError(f"LLM API call failed: {exc}", retryable=True) from exc

        if not want_json:
            return text
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise LLMCallError(
                f"LLM returned invalid JSON: {text[:200]}", retryable=False,
            ) from exc
        if not isinstance(parsed, dict):
            raise LLMCallError("LLM returned JSON that is not an object", retryable=False)
        return parsed


_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openai_compatible": "OPENAI_API_KEY",
}


def get_llm_client(provider: str | None = None) -> LLMClient | None:
    """Build the configured client, or ``None`` when running rule-based.

    A provider without its API key degrades to rule-based with a warning.
    """
    settings = get_settings()
    provider = (provider or settings.llm_provider or RULE_BASED).strip().lower()
    if provider == RULE_BASED:
        return None
    key_env = _KEY_ENV.get(provider)
    if key_env is None:
        log.warning("Unknown LLM provider %r, using rule-based logic", provider)
        return None
    if not os.environ.get(key_env):
        log.warning("%s is not set, using rule-based logic instead of %s", key_env, provider)
        return None
    return LLMClient(provider=provider, model=settings.llm_model or None)
