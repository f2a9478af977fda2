"""HTTP client for OpenAI-compatible chat completion services."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Protocol, Sequence

import httpx

from ..core.config import settings


logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """The completion service could not produce a usable reply."""


@dataclass(frozen=True)
class CompletionUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class Completion:
    text: str
    model: str
    usage: CompletionUsage = field(default_factory=CompletionUsage)


class CompletionGateway(Protocol):
    async def complete(
        self,
        turns: Sequence[Dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        ...


class HTTPCompletionGateway:
    """Call ``POST {base_url}/chat/completions`` and return the first choice."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        model: str,
        max_tokens: int,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._transport = transport

    async def complete(
        self,
        turns: Sequence[Dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": list(turns),
            "max_tokens": max_tokens or self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            ) as client:
                response = await client.post("/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise CompletionError(
                f"Completion service returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise CompletionError(f"Completion service unreachable: {exc!r}") from exc
        except ValueError as exc:
            raise CompletionError("Completion service returned invalid JSON") from exc

        return _parse_completion(data, payload["model"])


def _parse_completion(data: Any, requested_model: str) -> Completion:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise CompletionError("Completion response has no message content") from exc
    if not isinstance(content, str) or not content.strip():
        raise CompletionError("Completion response is empty")

    raw_usage = data.get("usage")
    if not isinstance(raw_usage, dict):
        raw_usage = {}
    usage = CompletionUsage(
        prompt_tokens=_token_count(raw_usage, "prompt_tokens"),
        completion_tokens=_token_count(raw_usage, "completion_tokens"),
        total_tokens=_token_count(raw_usage, "total_tokens"),
    )
    return Completion(text=content.strip(), model=data.get("model") or requested_model, usage=usage)


def _token_count(usage: Dict[str, Any], key: str) -> int:
    try:
        return int(usage.get(key) or 0)
    except (TypeError, ValueError):
        return 0


@lru_cache(maxsize=1)
def get_completion_gateway() -> CompletionGateway:
    """Return the gateway configured from application settings."""

    if not settings.COMPLETION_API_KEY:
        logger.warning("COMPLETION_API_KEY is not set; completion requests will likely be rejected")
    return HTTPCompletionGateway(
        settings.COMPLETION_API_BASE,
        settings.COMPLETION_API_KEY,
        model=settings.COMPLETION_MODEL,
        max_tokens=settings.COMPLETION_MAX_TOKENS,
        timeout=settings.COMPLETION_TIMEOUT,
    )


def build_payload_preview(turns: Sequence[Dict[str, str]]) -> List[str]:
    """Return ``role: first 40 chars`` summaries for debug logging."""

    return [f"{turn['role']}: {turn['content'][:40]}" for turn in turns]
