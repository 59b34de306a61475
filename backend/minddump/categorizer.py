"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Language model client that sorts a brain-dump transcript into four categories.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict

import httpx

from .config import settings
from .errors import BackendMisconfigured, ClassificationRequestFailed, ClassificationResponseInvalid
from .schemas import CATEGORY_NAMES, Categories

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a thoughtful assistant that helps people organize their thoughts. "
    "Always return valid JSON."
)

PROMPT_TEMPLATE = """You are a helpful AI assistant that organizes people's thoughts into clear categories.

A user has just done a "brain dump" - they spoke for a few minutes about whatever was on their mind after a long workday. Your job is to analyze their transcript and organize it into these 4 categories:

1. **Actions Needed**: Things they mentioned that require action or follow-up (tasks, emails to send, meetings to schedule, etc.)
2. **Decisions Pending**: Decisions they're struggling with or need to make
3. **Worries to Release**: Anxieties, concerns, or things they're stressed about that they should acknowledge and let go
4. **Wins to Celebrate**: Positive things, accomplishments, or things they're grateful for

Return ONLY a valid JSON object in this exact format:
{{
  "categories": {{
    "actions": ["action item 1", "action item 2"],
    "decisions": ["decision 1", "decision 2"],
    "worries": ["worry 1", "worry 2"],
    "wins": ["win 1", "win 2"]
  }}
}}

Guidelines:
- Be empathetic and understanding
- Extract the actual meaning, not just literal words
- If a category has no items, use an empty array
- Keep items concise but meaningful (1-2 sentences max)
- For actions, be specific about what needs to be done
- For worries, acknowledge them but frame them in a way that helps release them
- For wins, celebrate even small victories

User's transcript:
{transcript}

Return only the JSON, no other text."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", flags=re.DOTALL | re.IGNORECASE)


def build_prompt(transcript: str) -> str:
    """Fill the categorization prompt with the user's transcript."""
    return PROMPT_TEMPLATE.format(transcript=transcript)


def clean_response(text: str) -> str:
    """Remove think tags and Markdown fences some models wrap around JSON."""
    text = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL)
    if "</think>" in text:
        text = text.split("</think>", 1)[-1]
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    return text.strip()


def parse_categories(text: str) -> Categories:
    """
    Parse a model reply into Categories.

    The reply must be a JSON object with a ``categories`` object. Any category
    that is missing or not a list becomes an empty list, and non-string items
    are dropped.
    """
    try:
        parsed = json.loads(clean_response(text))
    except json.JSONDecodeError as e:
        raise ClassificationResponseInvalid(f"Model reply is not valid JSON: {e}") from e

    raw = parsed.get("categories") if isinstance(parsed, dict) else None
    if not isinstance(raw, dict):
        raise ClassificationResponseInvalid("Invalid response structure")

    values: Dict[str, list[str]] = {}
    for name in CATEGORY_NAMES:
        items = raw.get(name)
        if not isinstance(items, list):
            if items is not None:
                logger.warning("Category %s is not a list (%s); using empty list", name, type(items).__name__)
            values[name] = []
            continue
        values[name] = [item.strip() for item in items if isinstance(item, str) and item.strip()]
    return Categories(**values)


# ==================================================================================
# Base Client
# ==================================================================================

class BaseCategorizer(ABC):
    """
    Abstract base class for categorization backends.
    Subclasses implement the provider-specific request and reply shape.
    """

    service_name = "LLM"

    def __init__(self, model_name: str):
        self.model_name = model_name

    @abstractmethod
    async def _complete(self, system: str, prompt: str) -> str:
        """Send one chat exchange and return the raw reply text."""
        pass

    @abstractmethod
    async def health(self) -> bool:
        """Return True when the backend answers."""
        pass

    def check_configured(self) -> None:
        """Raise BackendMisconfigured when a required setting is missing."""
        return None

    async def warm_up(self) -> bool:
        """Make sure the backend is ready before the first categorization."""
        return await self.health()

    async def categorize(self, transcript: str) -> Categories:
        """Sort a transcript into actions, decisions, worries and wins."""
        if not isinstance(transcript, str) or not transcript.strip():
            raise ValueError("Transcript is required")
        self.check_configured()

        prompt = build_prompt(transcript)
        try:
            content = await self._complete(SYSTEM_PROMPT, prompt)
        except httpx.HTTPStatusError as e:
            logger.error("%s categorization error: %s - %s", self.service_name, e.response.status_code, e.response.text)
            raise ClassificationRequestFailed(f"{self.service_name} API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("%s categorization request failed: %r", self.service_name, e)
            raise ClassificationRequestFailed(f"{self.service_name} request failed") from e

        if not content or not content.strip():
            raise ClassificationRequestFailed(f"No response from {self.service_name}")

        categories = parse_categories(content)
        logger.info(
            "Categorized transcript (%d chars) into %d items via %s",
            len(transcript), categories.total_items(), self.model_name,
        )
        return categories

    async def _post_json(
        self,
        base_url: str,
        endpoint: str,
        payload: Dict[str, Any],
        timeout: float,
        purpose: str,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Shared HTTP execution logic."""
        logger.debug("%s %s via %s (%s)", self.service_name, purpose, self.model_name, endpoint)
        async with httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers) as client:
            response = await client.post(endpoint, json=payload)
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as e:
                raise ClassificationResponseInvalid(f"{self.service_name} returned a non-JSON body") from e

    async def _ping(self, base_url: str, endpoint: str, headers: Dict[str, str] | None = None) -> bool:
        try:
            async with httpx.AsyncClient(base_url=base_url, timeout=3.0, headers=headers) as client:
                response = await client.get(endpoint)
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning("%s service unreachable: %s", self.service_name, e)
            return False


# ==================================================================================
# OpenAI Implementation
# ==================================================================================

class OpenAICategorizer(BaseCategorizer):
    """Client for the OpenAI chat completions API in JSON mode."""

    service_name = "OpenAI"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {settings.openai_api_key}"}

    def check_configured(self) -> None:
        if not settings.openai_api_key:
            raise BackendMisconfigured("OpenAI API key not configured")

    async def _complete(self, system: str, prompt: str) -> str:
        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": settings.llm_temperature,
            "response_format": {"type": "json_object"},
        }
        data = await self._post_json(
            settings.openai_base_url,
            "/chat/completions",
            payload,
            settings.llm_timeout_seconds,
            "categorization",
            headers=self._headers(),
        )
        if not isinstance(data, dict):
            raise ClassificationResponseInvalid("Unexpected OpenAI response body")
        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise ClassificationResponseInvalid("Unexpected OpenAI response structure")
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ClassificationResponseInvalid("Unexpected OpenAI response structure")
        content = message.get("content")
        return content if isinstance(content, str) else ""

    async def health(self) -> bool:
        if not settings.openai_api_key:
            return False
        return await self._ping(settings.openai_base_url, "/models", headers=self._headers())


# ==================================================================================
# Ollama Implementation
# ==================================================================================

class OllamaCategorizer(BaseCategorizer):
    """Client for a local Ollama server using its JSON output mode."""

    service_name = "Ollama"

    async def _complete(self, system: str, prompt: str) -> str:
        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
            "format": "json",
            "keep_alive": settings.ollama_keep_alive_seconds,
            "options": {"temperature": settings.llm_temperature},
        }
        data = await self._post_json(
            settings.ollama_base_url,
            "/api/chat",
            payload,
            settings.llm_timeout_seconds,
            "categorization",
        )
        if not isinstance(data, dict):
            raise ClassificationResponseInvalid("Unexpected Ollama response body")
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else data.get("response")
        return content if isinstance(content, str) else ""

    async def health(self) -> bool:
        return await self._ping(settings.ollama_base_url, "/api/tags")

    async def warm_up(self) -> bool:
        """Load the model into memory so the first dump is not slowed down."""
        try:
            await self._post_json(
                settings.ollama_base_url,
                "/api/chat",
                {
                    "model": self.model_name,
                    "messages": [{"role": "user", "content": "hi"}],
                    "stream": False,
                    "keep_alive": settings.ollama_keep_alive_seconds,
                },
                300.0,
                "warm-up",
            )
            return True
        except (httpx.HTTPError, ClassificationResponseInvalid) as e:
            logger.warning("Ollama warm-up failed: %r", e)
            return False


# ==================================================================================
# Factory & Public Interface
# ==================================================================================

def get_categorizer(provider: str | None = None, model_name: str | None = None) -> BaseCategorizer:
    """Factory to return the categorizer for the configured provider."""
    provider = (provider or settings.llm_provider).lower().strip()
    model_name = model_name or settings.llm_model

    if provider == "ollama":
        return OllamaCategorizer(model_name)
    if provider == "openai":
        return OpenAICategorizer(model_name)
    raise BackendMisconfigured(f"Unknown LLM provider: {provider}")


async def categorize_transcript(transcript: str) -> Categories:
    """Categorize a transcript with the configured backend."""
    return await get_categorizer().categorize(transcript)


async def warm_up() -> bool:
    """Warm up the configured backend. Returns False when it is not ready."""
    try:
        categorizer = get_categorizer()
    except BackendMisconfigured as e:
        logger.warning("Skipping LLM warm-up: %s", e)
        return False
    ready = await categorizer.warm_up()
    if ready:
        logger.info("%s backend ready (%s)", categorizer.service_name, categorizer.model_name)
    else:
        logger.warning("%s backend not ready", categorizer.service_name)
    return ready
