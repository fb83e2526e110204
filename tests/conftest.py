"""Pytest configuration and fixtures."""

import os
from collections.abc import Iterable
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest
from openai.types.chat import ChatCompletion, ChatCompletionMessage
from openai.types.chat.chat_completion import Choice

from smartparser import ExtractionModel, SmartParser
from smartparser.config import get_settings


class PersonProfile(ExtractionModel):
    """Target shape used across the tests."""

    name: str
    age: int
    job_title: str | None
    summary: str


def make_completion(
    content: str | None,
    finish_reason: str = "stop",
    with_choice: bool = True,
) -> ChatCompletion:
    """Build a ChatCompletion as returned by the openai client."""
    choices = []
    if with_choice:
        choices.append(
            Choice(
                index=0,
                finish_reason=finish_reason,
                message=ChatCompletionMessage(role="assistant", content=content),
            )
        )
    return ChatCompletion(
        id="chatcmpl-test",
        object="chat.completion",
        created=1700000000,
        model="test-deployment",
        choices=choices,
    )


def make_connection_error() -> openai.APIConnectionError:
    """A transient transport failure as raised by the openai client."""
    return openai.APIConnectionError(
        request=httpx.Request("POST", "https://example.openai.azure.com/chat/completions")
    )


class FakeChatCompletions:
    """Stands in for ``client.chat.completions``; replays queued responses."""

    def __init__(self, responses: Iterable[Any]):
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> ChatCompletion:
        self.calls.append(kwargs)
        if not self._responses:
            raise AssertionError("Unexpected completion request")
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response(**kwargs)
        return response

    def system_prompts(self) -> list[str]:
        """System message text of every request, in order."""
        return [call["messages"][0]["content"] for call in self.calls]


class FakeOpenAIClient:
    """Minimal async OpenAI client exposing ``chat.completions.create``."""

    def __init__(self, responses: Iterable[Any] = ()):
        self.completions = FakeChatCompletions(responses)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def fake_client_factory():
    """Create fake clients preloaded with responses."""
    return FakeOpenAIClient


@pytest.fixture
def make_parser():
    """Create a SmartParser around a fake client with queued responses."""

    def _make(*responses: Any) -> tuple[SmartParser, FakeOpenAIClient]:
        client = FakeOpenAIClient(responses)
        return SmartParser(client=client, deployment_name="test-deployment"), client

    return _make


@pytest.fixture
def jane_json() -> str:
    """A well-formed response for the person profile shape."""
    return (
        '{"name": "Jane", "age": 34, "jobTitle": "product manager", '
        '"summary": "Jane is a 34-year-old product manager."}'
    )


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep SMART_PARSER_* variables from the host out of the tests."""
    for key in list(os.environ):
        if key.startswith("SMART_PARSER_"):
            monkeypatch.delenv(key, raising=False)

    get_settings.cache_clear()
