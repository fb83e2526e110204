"""
JSON Schema generation for target shapes.

Schemas are derived with pydantic and tightened so every object lists all of
its properties as required and forbids additional properties. The result is
cached per shape; generation is deterministic, so concurrent first use for
the same shape can only ever store identical documents.
"""

import json
import logging
import threading
from collections.abc import MutableMapping
from typing import Any

from pydantic import BaseModel, PydanticUserError

from ...exceptions import SchemaGenerationError
from ...models import ShapeDefinition, get_type_adapter, resolve_shape, shape_name

logger = logging.getLogger(__name__)


def _tighten(schema: dict[str, Any]) -> None:
    """Require every property and forbid extras on each object schema, recursively."""
    properties = schema.get("properties")
    if isinstance(properties, dict):
        schema["additionalProperties"] = False
        schema["required"] = list(properties)
        for sub_schema in properties.values():
            if isinstance(sub_schema, dict):
                _tighten(sub_schema)

    for key in ("$defs", "definitions"):
        definitions = schema.get(key)
        if isinstance(definitions, dict):
            for sub_schema in definitions.values():
                if isinstance(sub_schema, dict):
                    _tighten(sub_schema)

    for key in ("items", "additionalProperties", "not"):
        sub_schema = schema.get(key)
        if isinstance(sub_schema, dict):
            _tighten(sub_schema)

    for key in ("anyOf", "allOf", "oneOf", "prefixItems"):
        variants = schema.get(key)
        if isinstance(variants, list):
            for sub_schema in variants:
                if isinstance(sub_schema, dict):
                    _tighten(sub_schema)


def _root_type(schema: dict[str, Any]) -> Any:
    # Recursive models put the root behind a local $ref.
    ref = schema.get("$ref")
    if isinstance(ref, str) and ref.startswith("#/$defs/"):
        return schema.get("$defs", {}).get(ref.rsplit("/", 1)[-1], {}).get("type")
    return schema.get("type")


def build_json_schema(shape: Any) -> dict[str, Any]:
    """
    Translate a shape into a tightened JSON Schema dict (uncached).

    Raises:
        SchemaGenerationError: If the shape is not an object type or has a
            field pydantic cannot express in JSON Schema.
    """
    name = shape_name(shape)
    target = resolve_shape(shape)
    try:
        if isinstance(target, type) and issubclass(target, BaseModel):
            schema = target.model_json_schema(by_alias=True)
        else:
            schema = get_type_adapter(target).json_schema(by_alias=True)
    except (PydanticUserError, TypeError) as e:
        raise SchemaGenerationError(name, str(e)) from e

    root_type = _root_type(schema)
    if root_type != "object":
        raise SchemaGenerationError(
            name, f"top-level schema must be an object, got '{root_type}'"
        )

    _tighten(schema)
    return schema


class JsonSchemaGenerator:
    """
    Generates and caches JSON Schema documents per target shape.

    Args:
        cache: Mapping used to store generated documents. Any MutableMapping
            works (a plain dict by default); eviction is up to the mapping.
    """

    def __init__(self, cache: MutableMapping[Any, bytes] | None = None):
        self._cache: MutableMapping[Any, bytes] = cache if cache is not None else {}
        self._lock = threading.Lock()

    def generate_schema(self, shape: Any) -> bytes:
        """Return the compact UTF-8 JSON Schema document for ``shape``."""
        try:
            key = resolve_shape(shape)
        except (PydanticUserError, TypeError, ValueError) as e:
            name = shape.name if isinstance(shape, ShapeDefinition) else repr(shape)
            raise SchemaGenerationError(name, f"cannot build model: {e}") from e

        try:
            hash(key)
        except TypeError as e:
            raise SchemaGenerationError(shape_name(key), "shape must be a hashable type") from e

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Schema cache hit for %s", shape_name(key))
                return cached

            schema = build_json_schema(key)
            document = json.dumps(schema, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
            self._cache[key] = document
            logger.debug("Generated schema for %s: %s", shape_name(key), document[:500])
            return document
