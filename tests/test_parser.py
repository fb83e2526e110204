"""End-to-end tests for the SmartParser facade against a fake transport."""

import asyncio
import io

import pytest
from PIL import Image
from pydantic import BaseModel, ConfigDict
from tenacity import AsyncRetrying, stop_after_attempt, wait_none

from conftest import PersonProfile, make_completion, make_connection_error
from smartparser import CompletionOptions, SmartParser, default_retry_policy
from smartparser.exceptions import (
    ConfigurationError,
    FilteredResponseError,
    InvalidInputError,
    ResponseDeserializationError,
    SchemaGenerationError,
)

CONSIDERATIONS = "- If a title isn't clearly stated, set it to null."


def no_wait_policy(retry_count: int = 3):
    return default_retry_policy(retry_count=retry_count).copy(wait=wait_none())


class Opaque:
    pass


class Unsupported(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Opaque


class TestParse:
    """Tests for single-attempt parsing."""

    @pytest.mark.asyncio
    async def test_extracts_person(self, make_parser, jane_json: str):
        """Jane, 34, product manager → all fields populated."""
        parser, client = make_parser(make_completion(jane_json))

        person = await parser.parse(
            PersonProfile,
            "Jane is 34 and works as a product manager.",
            CONSIDERATIONS,
        )

        assert person.name == "Jane"
        assert person.age == 34
        assert person.job_title == "product manager"
        assert person.summary

        call = client.completions.calls[0]
        assert call["model"] == "test-deployment"
        assert CONSIDERATIONS in call["messages"][0]["content"]
        user_text = call["messages"][1]["content"][0]["text"]
        assert "Jane is 34 and works as a product manager." in user_text
        assert call["response_format"]["json_schema"]["schema"]["required"] == [
            "name",
            "age",
            "jobTitle",
            "summary",
        ]

    @pytest.mark.asyncio
    async def test_missing_title_is_null(self, make_parser):
        text = '{"name": "Sam", "age": 41, "jobTitle": null, "summary": "Sam enjoys hiking."}'
        parser, _ = make_parser(make_completion(text))

        person = await parser.parse(PersonProfile, "Sam, 41, enjoys hiking.", CONSIDERATIONS)

        assert person.job_title is None
        assert person.name == "Sam"
        assert person.age == 41
        assert person.summary

    @pytest.mark.asyncio
    async def test_schema_failure_before_network(self, make_parser):
        """Test that an unsupported shape never reaches the transport."""
        parser, client = make_parser(make_completion("{}"))
        with pytest.raises(SchemaGenerationError):
            await parser.parse(Unsupported, "anything")
        assert client.completions.calls == []

    @pytest.mark.asyncio
    async def test_filtered_response(self, make_parser, jane_json: str):
        parser, _ = make_parser(make_completion(jane_json, finish_reason="content_filter"))
        with pytest.raises(FilteredResponseError):
            await parser.parse(PersonProfile, "text")

    @pytest.mark.asyncio
    async def test_completion_options_applied(self, fake_client_factory, jane_json: str):
        client = fake_client_factory([make_completion(jane_json)])
        parser = SmartParser(
            client=client,
            deployment_name="o-series",
            completion_options=CompletionOptions(temperature=None),
        )
        await parser.parse(PersonProfile, "Jane")
        assert "temperature" not in client.completions.calls[0]

    def test_empty_deployment_rejected(self, fake_client_factory):
        with pytest.raises(ConfigurationError):
            SmartParser(client=fake_client_factory(), deployment_name="  ")

    @pytest.mark.asyncio
    async def test_cancel_during_transport(self, fake_client_factory):
        """Test that cancelling the task aborts the pending completion."""
        started = asyncio.Event()

        async def never_returns(**kwargs):
            started.set()
            await asyncio.Event().wait()

        client = fake_client_factory([never_returns])
        parser = SmartParser(client=client, deployment_name="test-deployment")

        task = asyncio.create_task(parser.parse_with_retry(PersonProfile, "Jane"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(client.completions.calls) == 1


class TestParseImage:
    """Tests for image inputs."""

    @pytest.mark.asyncio
    async def test_image_url(self, make_parser, jane_json: str):
        parser, client = make_parser(make_completion(jane_json))

        await parser.parse_image(PersonProfile, "https://example.com/badge.png", detail="high")

        part = client.completions.calls[0]["messages"][1]["content"][0]
        assert part == {
            "type": "image_url",
            "image_url": {"url": "https://example.com/badge.png", "detail": "high"},
        }

    @pytest.mark.asyncio
    async def test_image_bytes(self, make_parser, jane_json: str):
        buffer = io.BytesIO()
        Image.new("RGB", (2, 2)).save(buffer, format="JPEG")
        parser, client = make_parser(make_completion(jane_json))

        await parser.parse_image(PersonProfile, buffer.getvalue(), detail="low")

        image_url = client.completions.calls[0]["messages"][1]["content"][0]["image_url"]
        assert image_url["url"].startswith("data:image/jpeg;base64,")
        assert image_url["detail"] == "low"

    @pytest.mark.asyncio
    async def test_invalid_image_fails_before_network(self, make_parser):
        parser, client = make_parser()
        with pytest.raises(InvalidInputError):
            await parser.parse_image_with_retry(PersonProfile, "ftp://example.com/a.png")
        assert client.completions.calls == []


class TestParseWithRetry:
    """Tests for the retry-wrapped operations."""

    @pytest.mark.asyncio
    async def test_malformed_then_valid(self, make_parser, jane_json: str):
        """Test that the second prompt references the first response's raw text."""
        malformed = '{"name": "Jane", "jobTitle": "product manager"}'
        parser, client = make_parser(make_completion(malformed), make_completion(jane_json))

        person = await parser.parse_with_retry(
            PersonProfile,
            "Jane, 34, product manager",
            CONSIDERATIONS,
            retry_policy=no_wait_policy(),
        )

        assert person.age == 34
        first_prompt, second_prompt = client.completions.system_prompts()
        assert malformed not in first_prompt
        assert malformed in second_prompt
        assert CONSIDERATIONS in second_prompt
        assert "Return a complete and correct JSON object" in second_prompt

    @pytest.mark.asyncio
    async def test_transport_error_then_valid(self, make_parser, jane_json: str):
        """Test that a blind retry sends an identical request."""
        parser, client = make_parser(make_connection_error(), make_completion(jane_json))

        person = await parser.parse_with_retry(
            PersonProfile, "Jane", CONSIDERATIONS, retry_policy=no_wait_policy()
        )

        assert person.name == "Jane"
        first, second = client.completions.calls
        assert first["messages"] == second["messages"]

    @pytest.mark.asyncio
    async def test_exhausted_surfaces_last_error(self, make_parser):
        responses = [make_completion("not json") for _ in range(3)]
        parser, client = make_parser(*responses)

        with pytest.raises(ResponseDeserializationError) as exc_info:
            await parser.parse_with_retry(
                PersonProfile, "Jane", retry_policy=no_wait_policy(retry_count=2)
            )

        assert exc_info.value.completion_content == "not json"
        assert len(client.completions.calls) == 3

    @pytest.mark.asyncio
    async def test_image_with_retry(self, make_parser, jane_json: str):
        parser, client = make_parser(
            make_completion(None, finish_reason="length"),
            make_completion(jane_json),
        )

        person = await parser.parse_image_with_retry(
            PersonProfile,
            "https://example.com/badge.png",
            retry_policy=no_wait_policy(),
        )

        assert person.job_title == "product manager"
        first, second = client.completions.calls
        assert first["messages"] == second["messages"]

    @pytest.mark.asyncio
    async def test_caller_policy_surfaces_last_error(self, make_parser):
        """Test that a policy without reraise still raises the last parse error."""
        parser, client = make_parser(make_completion("not json"), make_completion("not json"))

        with pytest.raises(ResponseDeserializationError):
            await parser.parse_with_retry(
                PersonProfile,
                "Jane",
                retry_policy=AsyncRetrying(stop=stop_after_attempt(2), wait=wait_none()),
            )

        assert len(client.completions.calls) == 2

    @pytest.mark.asyncio
    async def test_caller_policy_unsupported_shape_fails_once(self, make_parser, monkeypatch):
        parser, client = make_parser()
        builds = []
        original = parser.schema_generator.generate_schema

        def counting_generate_schema(shape):
            builds.append(shape)
            return original(shape)

        monkeypatch.setattr(parser.schema_generator, "generate_schema", counting_generate_schema)

        with pytest.raises(SchemaGenerationError):
            await parser.parse_with_retry(
                Unsupported,
                "Jane",
                retry_policy=AsyncRetrying(stop=stop_after_attempt(4), wait=wait_none(), reraise=True),
            )

        assert builds == [Unsupported]
        assert client.completions.calls == []
