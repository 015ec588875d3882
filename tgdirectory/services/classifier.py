"""Text classification of channels into configured label sets."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from ..config import Settings
from ..errors import EnrichmentError, TransportError, ValidationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You classify Telegram channels. Pick exactly one {kind} value from the list "
    "you are given. Reply with that single value only, without explanations."
)
USER_PROMPT = (
    "Possible values: [{candidates}]\n\n"
    "Channel description:\n\"{text}\"\n\n"
    "Choose the most suitable value. Return only one exact value from the list."
)


class ClassifierUnavailable(EnrichmentError):
    """Raised by the disabled classifier."""


def match_label(label: Optional[str], candidates: Sequence[str]) -> Optional[str]:
    """Return the lower-cased candidate equal to ``label`` ignoring case, else ``None``."""

    if not label:
        return None
    wanted = label.strip().lower()
    for candidate in candidates:
        if candidate.strip().lower() == wanted:
            return wanted
    return None


def validate_label(field: str, label: Optional[str], candidates: Sequence[str]) -> str:
    matched = match_label(label, candidates)
    if matched is None:
        raise ValidationError(field, f"'{label}' is not one of the configured values", value=label)
    return matched


class Classifier(ABC):
    """Picks one label out of a candidate set for a piece of text."""

    enabled = True

    @abstractmethod
    async def classify(self, text: str, candidates: Sequence[str], *, kind: str = "label") -> str:
        """Return the raw label chosen for ``text``.

        The result is not guaranteed to be a member of ``candidates``; callers
        validate it with ``validate_label``.
        """


class DisabledClassifier(Classifier):
    """Stand-in used when no classification backend is configured."""

    enabled = False

    async def classify(self, text: str, candidates: Sequence[str], *, kind: str = "label") -> str:
        raise ClassifierUnavailable("No classifier configured")


class OpenAIClassifier(Classifier):
    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        client: Optional[AsyncOpenAI] = None,
        max_tokens: int = 50,
        temperature: float = 0.0,
        timeout: float = 30.0,
    ) -> None:
        if not model:
            raise ValueError("OpenAI model must be specified")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def _chat_completion(self, messages: list) -> str:
        logger.debug("Sending request to OpenAI with %d messages", len(messages))
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            raise TransportError("openai", str(exc)) from exc
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise TransportError("openai", "No content found in OpenAI response") from exc
        if content is None:
            raise TransportError("openai", "No content found in OpenAI response")
        logger.debug("Received content from OpenAI: %s", content)
        return content

    async def classify(self, text: str, candidates: Sequence[str], *, kind: str = "label") -> str:
        candidates_lower = [candidate.lower() for candidate in candidates]
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT.format(kind=kind)},
            {
                "role": "user",
                "content": USER_PROMPT.format(
                    candidates=", ".join(candidates_lower), text=text.strip()
                ),
            },
        ]
        result = await self._chat_completion(messages)
        return result.strip().lower()


def build_classifier(settings: Settings) -> Classifier:
    if not settings.classifier_enabled:
        logger.info("OpenAI credentials missing; classification disabled")
        return DisabledClassifier()
    return OpenAIClassifier(settings.openai_api_key, settings.openai_model)
