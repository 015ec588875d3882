import asyncio
from pathlib import Path
import sys
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from openai import OpenAIError

from tgdirectory.config import Settings
from tgdirectory.errors import TransportError, ValidationError
from tgdirectory.services import classifier as classifier_module
from tgdirectory.services.classifier import (
    ClassifierUnavailable,
    DisabledClassifier,
    OpenAIClassifier,
    build_classifier,
    match_label,
    validate_label,
)


class FakeCompletions:
    def __init__(self, reply: Any = None, error: Exception = None):
        self.reply = reply
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_match_label_is_case_insensitive():
    assert match_label(" News ", ["news", "tech"]) == "news"
    assert match_label("TECH", ["News", "Tech"]) == "tech"
    assert match_label("sports", ["news"]) is None
    assert match_label(None, ["news"]) is None


def test_validate_label_rejects_unknown_values():
    with pytest.raises(ValidationError) as excinfo:
        validate_label("geo", "us", ["de", "fr"])
    assert excinfo.value.field == "geo"
    assert excinfo.value.value == "us"


def test_openai_classifier_builds_prompt_and_normalizes_reply():
    completions = FakeCompletions(reply="  News\n")
    classifier = OpenAIClassifier("key", "gpt-test", client=_fake_client(completions))

    label = asyncio.run(classifier.classify(" Daily headlines ", ["News", "Tech"], kind="category"))

    assert label == "news"
    [call] = completions.calls
    assert call["model"] == "gpt-test"
    assert call["temperature"] == 0.0
    assert call["max_tokens"] == 50
    system, user = call["messages"]
    assert "category" in system["content"]
    assert "[news, tech]" in user["content"]
    assert '"Daily headlines"' in user["content"]


def test_openai_errors_become_transport_errors():
    completions = FakeCompletions(error=OpenAIError("rate limited"))
    classifier = OpenAIClassifier("key", "gpt-test", client=_fake_client(completions))
    with pytest.raises(TransportError):
        asyncio.run(classifier.classify("text", ["news"]))


def test_empty_content_is_a_transport_error():
    completions = FakeCompletions(reply=None)
    classifier = OpenAIClassifier("key", "gpt-test", client=_fake_client(completions))
    with pytest.raises(TransportError):
        asyncio.run(classifier.classify("text", ["news"]))


def test_model_is_required():
    with pytest.raises(ValueError):
        OpenAIClassifier("key", "", client=_fake_client(FakeCompletions()))


def test_disabled_classifier_always_fails():
    classifier = DisabledClassifier()
    assert classifier.enabled is False
    with pytest.raises(ClassifierUnavailable):
        asyncio.run(classifier.classify("text", ["news"]))


def test_build_classifier_without_credentials_is_disabled():
    assert isinstance(build_classifier(Settings()), DisabledClassifier)


def test_build_classifier_with_credentials(monkeypatch):
    created = {}

    class FakeAsyncOpenAI:
        def __init__(self, **kwargs):
            created.update(kwargs)

    monkeypatch.setattr(classifier_module, "AsyncOpenAI", FakeAsyncOpenAI)
    classifier = build_classifier(Settings(openai_api_key="key", openai_model="gpt-test"))
    assert isinstance(classifier, OpenAIClassifier)
    assert created["api_key"] == "key"
