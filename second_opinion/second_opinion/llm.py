"""
LLM Client for Second Opinion

Sends one system + user prompt pair to whichever provider the resolver
picked and returns the reply text. Three wire formats cover every
supported provider:
- openai: POST {base}/chat/completions (also groq, xai, openrouter,
  mistral, perplexity, qwen and ollama's compatible endpoint)
- anthropic: POST {base}/v1/messages
- google: POST {base}/v1beta/models/{model}:generateContent

Failures come back as BackendError with a category. Network errors,
rate limits and 5xx responses are retried with exponential backoff;
timeouts and client errors are not.
"""

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from .config.providers import get_spec, is_reasoning_model
from .config.resolution import ProviderConfiguration
from .errors import BackendError, ConfigurationError, ErrorCategory, categorize_error, categorize_status

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def build_request(system_prompt: str, user_prompt: str, config: ProviderConfiguration) -> tuple[str, dict, dict]:
    """Return (url, headers, json body) for the provider's wire format."""
    base = (config.base_url or get_spec(config.name).base_url).rstrip("/")

    match config.protocol:
        case "anthropic":
            body: dict[str, Any] = {
                "model": config.model,
                "max_tokens": config.max_tokens,
                # the messages API accepts 0-1
                "temperature": min(config.temperature, 1.0),
                "system": system_prompt,
                "messages": [{"role": "user", "content": user_prompt}],
            }
            headers = {
                "x-api-key": config.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            }
            return f"{base}/v1/messages", headers, body

        case "google":
            body = {
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                "generationConfig": {
                    "temperature": config.temperature,
                    "maxOutputTokens": config.max_tokens,
                },
            }
            headers = {"x-goog-api-key": config.api_key, "content-type": "application/json"}
            return f"{base}/v1beta/models/{config.model}:generateContent", headers, body

        case _:
            body = {
                "model": config.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            }
            if is_reasoning_model(config.model) and get_spec(config.name).supports_reasoning:
                # reasoning models take completion tokens instead of max_tokens and no temperature
                body["max_completion_tokens"] = config.max_completion_tokens or config.max_tokens
                if config.verbosity:
                    body["verbosity"] = config.verbosity
                if config.reasoning_effort:
                    body["reasoning_effort"] = config.reasoning_effort
            else:
                body["temperature"] = config.temperature
                body["max_tokens"] = config.max_tokens
            headers = {"Authorization": f"Bearer {config.api_key}", "content-type": "application/json"}
            return f"{base}/chat/completions", headers, body


def extract_text(protocol: str, data: dict) -> str:
    """Pull the reply text out of a provider response body."""
    try:
        match protocol:
            case "anthropic":
                return "".join(b.get("text", "") for b in data.get("content", []) if b.get("type") == "text")
            case "google":
                parts = data["candidates"][0]["content"].get("parts", [])
                return "".join(p.get("text", "") for p in parts)
            case _:
                return data["choices"][0]["message"].get("content") or ""
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""


class LLMClient:
    """Async client shared by every operation."""

    def __init__(
        self,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._client = httpx.AsyncClient(transport=transport)
        self._stats = {"total_requests": 0, "failed_requests": 0, "retries": 0}

    async def invoke(self, system_prompt: str, user_prompt: str, config: ProviderConfiguration) -> str:
        """
        Return the model's reply text or raise BackendError.

        Each attempt is bounded by the provider's timeout_ms.
        """
        if not config.has_api_key or not config.api_key:
            raise ConfigurationError(
                f"Provider {config.name} has no API key configured",
                code="API_KEY_NOT_SET",
                provider=config.name,
                env_var=get_spec(config.name).api_key_var,
            )

        self._stats["total_requests"] += 1
        last_error: Optional[BackendError] = None
        for attempt in range(self.max_retries):
            try:
                return await self._call(system_prompt, user_prompt, config)
            except BackendError as e:
                last_error = e
                if not e.retryable or attempt == self.max_retries - 1:
                    break
                self._stats["retries"] += 1
                delay = self.backoff_seconds * (2 ** attempt)
                logger.warning(
                    "%s call failed (%s), retrying in %.1fs", config.name, e.category.value, delay
                )
                await asyncio.sleep(delay)

        self._stats["failed_requests"] += 1
        logger.warning("%s call failed: %s [%s]", config.name, last_error.message, last_error.category.value)
        raise last_error

    async def _call(self, system_prompt: str, user_prompt: str, config: ProviderConfiguration) -> str:
        timeout = (config.timeout_ms or 60_000) / 1000
        start = time.time()
        try:
            url, headers, body = build_request(system_prompt, user_prompt, config)
            response = await self._client.post(url, headers=headers, json=body, timeout=timeout)
        except httpx.TimeoutException as e:
            raise BackendError(
                f"{config.name} did not answer within {timeout:.0f}s",
                ErrorCategory.TIMEOUT,
                provider=config.name,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"Could not reach {config.name}: {e}",
                ErrorCategory.NETWORK,
                provider=config.name,
                cause=e,
            ) from e
        except Exception as e:
            # malformed base URL, bad headers and the like
            raise BackendError(
                f"Could not send request to {config.name}: {type(e).__name__}: {e}",
                categorize_error(e),
                provider=config.name,
                cause=e,
            ) from e

        if response.status_code >= 400:
            raise BackendError(
                f"{config.name} returned HTTP {response.status_code}: {response.text[:300]}",
                categorize_status(response.status_code),
                provider=config.name,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(
                f"{config.name} returned a non-JSON body", ErrorCategory.PROVIDER, provider=config.name, cause=e
            ) from e

        text = extract_text(config.protocol, data)
        if not text.strip():
            raise BackendError(f"{config.name} returned an empty response", ErrorCategory.PROVIDER, provider=config.name)

        logger.debug("%s answered in %dms", config.name, int((time.time() - start) * 1000))
        return text

    def get_stats(self) -> dict:
        return dict(self._stats)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()
