"""
SmartParser.

Extracts structured, typed data from free text and images using a
schema-constrained LLM chat completion, with a corrective retry loop
for outputs that do not match the requested shape.
"""

__version__ = "1.0.0"

from .config import SmartParserSettings, get_settings, load_settings
from .exceptions import (
    CompletionTransportError,
    ConfigurationError,
    EmptyResponseError,
    FilteredResponseError,
    InvalidInputError,
    NullResponseContentError,
    ResponseDeserializationError,
    SchemaGenerationError,
    SmartParserError,
    TruncatedResponseError,
    UnexpectedCompletionsResponseError,
)
from .models import (
    CompletionOptions,
    ExtractionModel,
    FieldDefinition,
    FieldType,
    ImageDetailLevel,
    ShapeDefinition,
)
from .services.parser import (
    JsonSchemaGenerator,
    SmartParser,
    create_smart_parser,
    default_retry_policy,
    get_smart_parser,
)

__all__ = [
    "SmartParser",
    "SmartParserSettings",
    "JsonSchemaGenerator",
    "create_smart_parser",
    "get_smart_parser",
    "get_settings",
    "load_settings",
    "default_retry_policy",
    "CompletionOptions",
    "ExtractionModel",
    "FieldDefinition",
    "FieldType",
    "ImageDetailLevel",
    "ShapeDefinition",
    "SmartParserError",
    "ConfigurationError",
    "SchemaGenerationError",
    "InvalidInputError",
    "CompletionTransportError",
    "UnexpectedCompletionsResponseError",
    "FilteredResponseError",
    "TruncatedResponseError",
    "EmptyResponseError",
    "NullResponseContentError",
    "ResponseDeserializationError",
]
