"""
Structured extraction package.

This package provides the parsing pipeline split into:
- schema: JSON Schema generation and caching per target shape
- prompts: System/user message construction
- completion: Schema-constrained completion and response validation
- deserialization: Completion text to typed result
- retry: Corrective retry loop
- client: OpenAI transport construction

The SmartParser class ties these together behind parse/parse_image and their
retry-wrapped variants.
"""

import logging
from collections.abc import MutableMapping
from typing import Any, TypeVar

from PIL import Image
from tenacity import AsyncRetrying

from ...config import SmartParserSettings, get_settings
from ...exceptions import ConfigurationError
from ...models import (
    CompletionOptions,
    ImageDetailLevel,
    ParseInput,
    TextInput,
    shape_name,
)
from .client import create_completion_client
from .completion import complete_chat, validate_completion
from .deserialization import deserialize_result
from .prompts import build_image_input, build_messages
from .retry import default_retry_policy, run_with_corrective_retry
from .schema import JsonSchemaGenerator

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "SmartParser",
    "JsonSchemaGenerator",
    "create_smart_parser",
    "get_smart_parser",
    "default_retry_policy",
]


class SmartParser:
    """
    Parses text and image inputs into structured results.

    ``shape`` is a pydantic model (ExtractionModel subclasses get camelCase
    names), a dataclass, a TypedDict, or a ShapeDefinition.
    """

    def __init__(
        self,
        client: Any,  # openai.AsyncOpenAI / AsyncAzureOpenAI
        deployment_name: str,
        completion_options: CompletionOptions | None = None,
        schema_generator: JsonSchemaGenerator | None = None,
    ):
        """
        Initialize the parser.

        Args:
            client: Async OpenAI client used as the completion transport.
            deployment_name: Deployment (Azure) or model name.
            completion_options: Sampling options for every request.
            schema_generator: Shared schema generator; a new one when omitted.
        """
        if not deployment_name or not deployment_name.strip():
            raise ConfigurationError("deployment_name must not be empty")

        self.client = client
        self.deployment_name = deployment_name
        self.completion_options = completion_options or CompletionOptions()
        self.schema_generator = schema_generator or JsonSchemaGenerator()

    async def parse(self, shape: type[T] | Any, input_text: str, considerations: str | None = None) -> T:
        """
        Parse free text into ``shape``.

        Args:
            shape: Target shape.
            input_text: The text to extract from.
            considerations: Optional guidance appended to the system prompt.

        Returns:
            An instance of ``shape``.
        """
        return await self.parse_input(shape, TextInput(text=input_text), considerations)

    async def parse_image(
        self,
        shape: type[T] | Any,
        image: str | bytes | Image.Image,
        mime_type: str | None = None,
        detail: ImageDetailLevel | str | None = None,
        considerations: str | None = None,
    ) -> T:
        """
        Parse an image (URL, raw bytes or PIL Image) into ``shape``.

        Args:
            shape: Target shape.
            image: Image URL, image bytes or PIL Image.
            mime_type: MIME type of raw bytes (e.g. image/png); detected when omitted.
            detail: Optional detail level hint (auto, low, high).
            considerations: Optional guidance appended to the system prompt.

        Returns:
            An instance of ``shape``.
        """
        image_input = build_image_input(image, mime_type=mime_type, detail=detail)
        return await self.parse_input(shape, image_input, considerations)

    async def parse_input(
        self,
        shape: type[T] | Any,
        parse_input: ParseInput,
        considerations: str | None = None,
    ) -> T:
        """Run one parse attempt for an already built input."""
        # Fails fast on unsupported shapes, before the transport is touched.
        schema = self.schema_generator.generate_schema(shape)
        messages = build_messages(parse_input, considerations)

        logger.info(
            "Parsing %s input into %s",
            parse_input.kind,
            shape_name(shape),
        )
        completion = await complete_chat(
            self.client,
            messages,
            schema,
            self.deployment_name,
            self.completion_options,
        )
        content = validate_completion(completion)
        return deserialize_result(content, shape)

    async def parse_with_retry(
        self,
        shape: type[T] | Any,
        input_text: str,
        considerations: str | None = None,
        retry_policy: AsyncRetrying | None = None,
    ) -> T:
        """
        ``parse`` with corrective retries.

        Args:
            retry_policy: tenacity policy; defaults to 3 retries with
                decorrelated jitter starting around one second.
        """
        parse_input = TextInput(text=input_text)
        return await run_with_corrective_retry(
            lambda effective: self.parse_input(shape, parse_input, effective),
            considerations,
            retry_policy,
        )

    async def parse_image_with_retry(
        self,
        shape: type[T] | Any,
        image: str | bytes | Image.Image,
        mime_type: str | None = None,
        detail: ImageDetailLevel | str | None = None,
        considerations: str | None = None,
        retry_policy: AsyncRetrying | None = None,
    ) -> T:
        """``parse_image`` with corrective retries."""
        image_input = build_image_input(image, mime_type=mime_type, detail=detail)
        return await run_with_corrective_retry(
            lambda effective: self.parse_input(shape, image_input, effective),
            considerations,
            retry_policy,
        )


# =============================================================================
# Factory
# =============================================================================


def create_smart_parser(
    settings: SmartParserSettings | None = None,
    *,
    completion_options: CompletionOptions | None = None,
    client: Any | None = None,
    schema_cache: MutableMapping[Any, bytes] | None = None,
) -> SmartParser:
    """
    Build a SmartParser from validated settings.

    Args:
        settings: Connection settings; loaded from the environment when omitted.
        completion_options: Sampling options (temperature 0 by default).
        client: Pre-built transport; created from settings when omitted.
        schema_cache: Mapping for generated schemas.

    Raises:
        ConfigurationError: If settings are missing or invalid.
    """
    settings = settings or get_settings()
    return SmartParser(
        client=client or create_completion_client(settings),
        deployment_name=settings.deployment_name,
        completion_options=completion_options,
        schema_generator=JsonSchemaGenerator(cache=schema_cache),
    )


_smart_parser: SmartParser | None = None


def get_smart_parser() -> SmartParser:
    """
    Get or create the SmartParser singleton.

    Creation is not locked: threads racing on first use may each build a
    parser, and the last one assigned wins. Call it once at startup, or pass
    parsers built with create_smart_parser(), where that matters.
    """
    global _smart_parser
    if _smart_parser is None:
        _smart_parser = create_smart_parser()
    return _smart_parser
