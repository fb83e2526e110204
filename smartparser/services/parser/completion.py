"""
Schema-constrained chat completion and response validation.

complete_chat issues exactly one logical request; transient transport
failures are retried by the openai client itself (max_retries) and, above
that, by the corrective retry loop. validate_completion rejects completions
that carry no usable text before any deserialization is attempted.
"""

import json
import logging
from typing import Any

import openai
from openai.types.chat import ChatCompletion

from ...exceptions import (
    CompletionTransportError,
    EmptyResponseError,
    FilteredResponseError,
    NullResponseContentError,
    TruncatedResponseError,
)
from ...models import CompletionOptions

logger = logging.getLogger(__name__)

RESPONSE_FORMAT_NAME = "ExtractionResult"


def build_response_format(schema: bytes, strict: bool = False) -> dict[str, Any]:
    """JSON-schema response format for the chat completions API."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": RESPONSE_FORMAT_NAME,
            "schema": json.loads(schema),
            "strict": strict,
        },
    }


async def complete_chat(
    client: Any,  # openai.AsyncOpenAI / AsyncAzureOpenAI
    messages: list[dict[str, Any]],
    schema: bytes,
    deployment_name: str,
    options: CompletionOptions | None = None,
) -> ChatCompletion:
    """
    Request one schema-constrained completion.

    Args:
        client: Async OpenAI client.
        messages: System and user messages.
        schema: Generated JSON Schema document.
        deployment_name: Deployment (Azure) or model name.
        options: Sampling options; defaults to temperature 0.

    Returns:
        The raw ChatCompletion.

    Raises:
        CompletionTransportError: If the request fails at the transport/API level.
    """
    options = options or CompletionOptions()
    response_format = build_response_format(schema, strict=options.strict_schema)

    logger.info(
        "Requesting completion from '%s' (%d messages, strict schema: %s)",
        deployment_name,
        len(messages),
        options.strict_schema,
    )
    try:
        completion = await client.chat.completions.create(
            model=deployment_name,
            messages=messages,
            response_format=response_format,
            **options.to_request_kwargs(),
        )
    except openai.OpenAIError as e:
        logger.warning("Chat completion request to '%s' failed: %s", deployment_name, e)
        raise CompletionTransportError(f"Chat completion request failed: {e}") from e

    logger.info("Completion received from '%s'", deployment_name)
    return completion


def _raw_response(completion: Any) -> str | None:
    try:
        return completion.model_dump_json()
    except (AttributeError, TypeError, ValueError):
        return None


def validate_completion(completion: ChatCompletion) -> str:
    """
    Return the completion text, or raise if the completion is unusable.

    Checks run in order: content filter, length limit, missing choices,
    missing text. Filter and length come first because a filtered or
    truncated completion may still carry (misleading) content.
    """
    choices = completion.choices or []
    choice = choices[0] if choices else None
    finish_reason = choice.finish_reason if choice is not None else None

    if finish_reason == "content_filter":
        raise FilteredResponseError(
            "Filtered by the content filter.", _raw_response(completion)
        )

    if finish_reason == "length":
        raise TruncatedResponseError(
            "Model reached maximum number of tokens allowed.", _raw_response(completion)
        )

    if choice is None:
        raise EmptyResponseError(
            "Cannot parse input. Completions response does not have any contents.",
            _raw_response(completion),
        )

    message = choice.message
    content = message.content if message is not None else None
    if not content or not content.strip():
        refusal = getattr(message, "refusal", None)
        reason = f" Model refused: {refusal}" if refusal else ""
        raise NullResponseContentError(
            f"Cannot parse input. Chat completion response is null.{reason}",
            _raw_response(completion),
        )

    return content
