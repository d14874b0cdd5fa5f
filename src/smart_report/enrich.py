"""Remediation hints for failing tests from a text-generation service.

A :class:`RemediationProvider` turns a failing test's error context into a
short natural-language suggestion.  Two HTTP backends are available; which
one is used is decided once, from the credentials present in the
environment, by :func:`select_provider`.
"""

from __future__ import annotations

import abc
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

from smart_report import __version__
from smart_report.logging import get_logger

log = get_logger("enrich")

ANTHROPIC_KEY_VAR = "ANTHROPIC_API_KEY"
OPENAI_KEY_VAR = "OPENAI_API_KEY"

NO_SUGGESTION = "No suggestion available"
_MAX_TOKENS = 256
_USER_AGENT = f"smart-report/{__version__}"


class EnrichmentError(Exception):
    """A provider could not produce a suggestion for one test."""


@dataclass(frozen=True)
class RemediationRequest:
    """The error context sent to a provider for one failing test."""

    title: str
    file: str
    error: str | None = None
    trace: str | None = None


def build_prompt(request: RemediationRequest) -> str:
    """Render the instruction text sent to the provider."""
    return (
        "Analyze this pytest test failure and suggest a fix. "
        "Be concise (2-3 sentences max).\n"
        "\n"
        f"Test: {request.title}\n"
        f"File: {request.file}\n"
        f"Error: {request.error or 'Unknown error'}\n"
        "\n"
        "Stack trace:\n"
        f"{request.trace or 'No stack trace available'}\n"
        "\n"
        "Provide a brief, actionable suggestion to fix this failure."
    )


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class RemediationProvider(abc.ABC):
    """Produces a remediation suggestion for a failing test."""

    name = "provider"

    def __init__(self, api_key: str, *, timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def suggest(self, request: RemediationRequest) -> str:
        """Return a suggestion for *request*.

        Raises:
            EnrichmentError: If the service fails or answers with an error.
        """
        try:
            resp = requests.post(
                self.url,
                json=self.payload(build_prompt(request)),
                headers={"User-Agent": _USER_AGENT, **self.headers()},
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise EnrichmentError(f"{self.name} request timed out") from exc
        except requests.RequestException as exc:
            raise EnrichmentError(f"{self.name} request failed: {exc}") from exc

        if not resp.ok:
            raise EnrichmentError(f"{self.name} API error: {resp.status_code}")

        try:
            data = resp.json()
        except (ValueError, requests.JSONDecodeError) as exc:
            raise EnrichmentError(f"{self.name} returned invalid JSON") from exc

        return self.extract_text(data) or NO_SUGGESTION

    @property
    @abc.abstractmethod
    def url(self) -> str: ...

    @abc.abstractmethod
    def headers(self) -> dict[str, str]: ...

    @abc.abstractmethod
    def payload(self, prompt: str) -> dict[str, Any]: ...

    @abc.abstractmethod
    def extract_text(self, data: Any) -> str | None: ...


class AnthropicProvider(RemediationProvider):
    name = "Anthropic"
    url = "https://api.anthropic.com/v1/messages"
    model = "claude-3-haiku-20240307"

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"}

    def payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": _MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }

    def extract_text(self, data: Any) -> str | None:
        try:
            return data["content"][0].get("text")
        except (KeyError, IndexError, TypeError, AttributeError):
            return None


class OpenAIProvider(RemediationProvider):
    name = "OpenAI"
    url = "https://api.openai.com/v1/chat/completions"
    model = "gpt-3.5-turbo"

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": _MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }

    def extract_text(self, data: Any) -> str | None:
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None


def select_provider(
    environ: Mapping[str, str],
    *,
    timeout: float = 30.0,
) -> RemediationProvider | None:
    """Pick a provider from the credentials in *environ*.

    ``ANTHROPIC_API_KEY`` wins over ``OPENAI_API_KEY``.  Returns ``None``
    when neither is set.
    """
    anthropic_key = environ.get(ANTHROPIC_KEY_VAR)
    if anthropic_key:
        return AnthropicProvider(anthropic_key, timeout=timeout)
    openai_key = environ.get(OPENAI_KEY_VAR)
    if openai_key:
        return OpenAIProvider(openai_key, timeout=timeout)
    return None
