"""
Shared exceptions for SmartParser modules.

Every failure raised by the parsing pipeline derives from SmartParserError so
callers can catch the whole family with a single handler.
"""


class SmartParserError(Exception):
    """Raised when a SmartParser operation fails."""

    pass


class ConfigurationError(SmartParserError):
    """Raised when required settings are missing or malformed."""

    pass


class SchemaGenerationError(SmartParserError):
    """Raised when a target shape cannot be translated into a JSON Schema."""

    def __init__(self, shape_name: str, reason: str):
        super().__init__(f"Cannot generate JSON schema for {shape_name}: {reason}")
        self.shape_name = shape_name


class InvalidInputError(SmartParserError, ValueError):
    """Raised when a parse input (URL, image bytes, MIME type) is unusable."""

    pass


class CompletionTransportError(SmartParserError):
    """Raised when the chat-completion transport fails (network, rate limit, API error)."""

    pass


class UnexpectedCompletionsResponseError(SmartParserError):
    """Raised when a completion cannot be used; keeps the raw response for diagnostics."""

    def __init__(self, message: str, raw_response: str | None = None):
        suffix = f" Raw response: {raw_response}" if raw_response is not None else ""
        super().__init__(f"{message}{suffix}")
        self.raw_response = raw_response


class FilteredResponseError(UnexpectedCompletionsResponseError):
    """The completion was blocked by the content filter."""


class TruncatedResponseError(UnexpectedCompletionsResponseError):
    """The model stopped because it reached the token limit."""


class EmptyResponseError(UnexpectedCompletionsResponseError):
    """The completion did not contain any choices."""


class NullResponseContentError(UnexpectedCompletionsResponseError):
    """The completion message has no text content."""


class ResponseDeserializationError(SmartParserError):
    """
    Raised when completion text cannot be converted into the target shape.

    Attributes:
        target_type_name: Name of the shape the text was converted into.
        completion_content: The raw text returned by the model.
    """

    def __init__(self, target_type_name: str, completion_content: str):
        super().__init__(
            f"Deserializing completion content into {target_type_name} failed. "
            f"Completion content: '{completion_content}'"
        )
        self.target_type_name = target_type_name
        self.completion_content = completion_content
