"""Perplexity API client used by every discovery and profile run."""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass
from typing import Any

import requests

from errors import MalformedResponseError, SearchTimeoutError, UpstreamError

PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"
PERPLEXITY_MODEL = os.getenv("PERPLEXITY_MODEL", "sonar-deep-research")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("PERPLEXITY_TIMEOUT_SECONDS", "180"))
MAX_ATTEMPTS = int(os.getenv("PERPLEXITY_MAX_ATTEMPTS", "3"))
BACKOFF_SECONDS = float(os.getenv("PERPLEXITY_BACKOFF_SECONDS", "2.0"))
MAX_BACKOFF_SECONDS = 30.0

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retry with jittered exponential backoff for transient failures.

    Attempt ``n`` (1-based) that fails transiently sleeps
    ``min(max_delay, base_delay * 2 ** (n - 1))`` scaled by a random factor
    in ``[1 - jitter, 1]`` before the next attempt.
    """

    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = BACKOFF_SECONDS
    max_delay: float = MAX_BACKOFF_SECONDS
    jitter: float = 0.5

    def delay_for(self, attempt: int) -> float:
        ceiling = min(self.max_delay, self.base_delay * 2 ** (attempt - 1))
        return ceiling * random.uniform(1.0 - self.jitter, 1.0)


DEFAULT_RETRY_POLICY = RetryPolicy()


def search_perplexity(
    prompt: str,
    *,
    model: str | None = None,
    timeout: float | None = None,
    retry: RetryPolicy | None = None,
) -> str:
    """Send one user prompt and return the first choice's message content.

    Raises:
        RuntimeError: PERPLEXITY_API_KEY is not configured.
        UpstreamError: non-2xx answer (or unreachable host) after retries.
        SearchTimeoutError: the last attempt timed out.
        MalformedResponseError: the envelope has no usable content.
    """
    api_key = os.getenv("PERPLEXITY_API_KEY")
    if not api_key:
        raise RuntimeError("PERPLEXITY_API_KEY environment variable is required")

    policy = retry or DEFAULT_RETRY_POLICY
    model = model or PERPLEXITY_MODEL
    timeout = timeout or REQUEST_TIMEOUT_SECONDS

    LOGGER.info("Calling Perplexity model=%s prompt_chars=%s", model, len(prompt))
    for attempt in range(1, policy.max_attempts + 1):
        try:
            content = _call_perplexity(api_key=api_key, prompt=prompt, model=model, timeout=timeout)
            LOGGER.info("Perplexity answered on attempt %s/%s (%s chars)", attempt, policy.max_attempts, len(content))
            return content
        except (UpstreamError, SearchTimeoutError) as exc:
            transient = isinstance(exc, SearchTimeoutError) or exc.retryable
            if not transient or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            LOGGER.warning(
                "Perplexity call failed on attempt %s/%s, retrying in %.1fs: %s",
                attempt,
                policy.max_attempts,
                delay,
                exc,
            )
            time.sleep(delay)

    raise RuntimeError("RetryPolicy.max_attempts must be at least 1")


def _call_perplexity(api_key: str, prompt: str, model: str, timeout: float) -> str:
    payload = {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(PERPLEXITY_API_URL, headers=headers, json=payload, timeout=timeout)
    except requests.Timeout as exc:
        raise SearchTimeoutError(f"Perplexity API timed out after {timeout:g}s") from exc
    except requests.RequestException as exc:
        raise UpstreamError(f"Perplexity API unreachable: {exc}") from exc

    if not response.ok:
        raise UpstreamError(
            f"Perplexity API error: {response.status_code} {response.reason} - {response.text}",
            status=response.status_code,
            body=response.text,
        )

    try:
        body: Any = response.json()
    except ValueError as exc:
        raise MalformedResponseError("Perplexity returned a non-JSON envelope", raw=response.text) from exc

    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise MalformedResponseError(f"Unexpected Perplexity response shape: {str(body)[:200]}") from exc

    if not isinstance(content, str) or not content.strip():
        raise MalformedResponseError("Perplexity returned an empty response")
    return content
