"""Chat-completion provider built on the OpenAI client."""

from __future__ import annotations

import atexit
import logging
import os
import time
from dataclasses import dataclass

import httpx
from openai import APITimeoutError, OpenAI, OpenAIError

from practice_tracker.config import Settings
from practice_tracker.metrics import gpt_timeout_total

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 30.0


class ConfigurationError(RuntimeError):
    """The provider cannot be used at all (missing credential)."""


class ProviderError(RuntimeError):
    """The provider call failed or returned nothing usable."""


@dataclass(frozen=True)
class ChatCompletion:
    text: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


def _load_timeout(value: float | str | None = None) -> float:
    raw = value if value is not None else os.environ.get("OPENAI_TIMEOUT_SECONDS")
    try:
        timeout = float(raw) if raw is not None else _DEFAULT_TIMEOUT_SECONDS
    except (TypeError, ValueError):
        return _DEFAULT_TIMEOUT_SECONDS
    return timeout if timeout > 0 else _DEFAULT_TIMEOUT_SECONDS


def _build_http_client() -> httpx.Client | None:
    mounts: dict[str, httpx.HTTPTransport] = {}
    http_proxy = os.environ.get("HTTP_PROXY")
    https_proxy = os.environ.get("HTTPS_PROXY")
    if http_proxy:
        mounts["http://"] = httpx.HTTPTransport(proxy=http_proxy)
    if https_proxy:
        mounts["https://"] = httpx.HTTPTransport(proxy=https_proxy)
    return httpx.Client(mounts=mounts) if mounts else None


class OpenAIChatProvider:
    """Single ``complete_chat`` operation over OpenAI chat completions.

    The OpenAI client itself is built on first use; a missing API key is
    rejected here, once, at construction.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        timeout: float | str | None = None,
        client: OpenAI | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ConfigurationError("OPENAI_API_KEY environment variable is not set")
        self.api_key = api_key
        self.model = model
        self.timeout = _load_timeout(timeout)
        self._client = client
        self._http_client: httpx.Client | None = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._http_client = _build_http_client()
            self._client = OpenAI(
                api_key=self.api_key,
                http_client=self._http_client,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
        self._http_client = None
        self._client = None

    def complete_chat(
        self,
        system: str,
        prompt: str,
        *,
        temperature: float = 0.1,
        max_tokens: int = 500,
        json_mode: bool = True,
    ) -> ChatCompletion:
        """Run one chat completion and return its text with token counts."""
        client = self._get_client()
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": self.timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        started = time.perf_counter()
        try:
            response = client.chat.completions.create(**kwargs)
        except APITimeoutError as exc:
            gpt_timeout_total.inc()
            raise TimeoutError(f"OpenAI request timed out after {self.timeout}s") from exc
        except OpenAIError as exc:
            raise ProviderError("OpenAI request failed") from exc
        logger.debug("openai completion took %.2fs", time.perf_counter() - started)

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise ProviderError("Malformed OpenAI response") from exc
        if not text or not text.strip():
            raise ProviderError("No response from OpenAI")

        usage = getattr(response, "usage", None)
        return ChatCompletion(
            text=text.strip(),
            model=self.model,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            total_tokens=getattr(usage, "total_tokens", None),
        )


_provider: OpenAIChatProvider | None = None


def get_chat_provider(cfg: Settings | None = None) -> OpenAIChatProvider:
    """Lazily build and cache the process-wide provider."""

    global _provider
    if _provider is None:
        cfg = cfg or Settings()
        _provider = OpenAIChatProvider(
            cfg.openai_api_key,
            model=cfg.openai_model,
            timeout=cfg.openai_timeout_seconds,
        )
    return _provider


def close_chat_provider() -> None:
    global _provider
    if _provider is not None:
        _provider.close()
    _provider = None


atexit.register(close_chat_provider)


__all__ = [
    "ChatCompletion",
    "ConfigurationError",
    "OpenAIChatProvider",
    "ProviderError",
    "close_chat_provider",
    "get_chat_provider",
]
