"""
Conversion of completion text into the caller's target shape.
"""

import logging
from typing import Any

from pydantic import ValidationError

from ...exceptions import ResponseDeserializationError
from ...models import get_type_adapter, resolve_shape, shape_name

logger = logging.getLogger(__name__)


def deserialize_result(completion_content: str, shape: Any) -> Any:
    """
    Validate JSON text against ``shape`` and return the typed instance.

    Raises:
        ResponseDeserializationError: On malformed JSON, a missing required
            field, a type mismatch or a JSON null payload. The raw text is
            kept on the error for corrective retries.
    """
    target = resolve_shape(shape)
    try:
        return get_type_adapter(target).validate_json(completion_content)
    except ValidationError as e:
        logger.error(
            "Failed to deserialize completion into %s (%d errors): %s",
            shape_name(target),
            e.error_count(),
            completion_content[:500],
        )
        raise ResponseDeserializationError(shape_name(target), completion_content) from e
