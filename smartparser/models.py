"""
Pydantic models for the structured-extraction pipeline.

Defines the target shape building blocks (ExtractionModel, declarative
ShapeDefinition), the tagged parse inputs (text, image URL, image bytes)
and the completion sampling options.
"""

import datetime
import json
import re
from enum import Enum
from functools import lru_cache
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    create_model,
    field_validator,
)
from pydantic.alias_generators import to_camel


# =============================================================================
# Target Shapes
# =============================================================================


class ExtractionModel(BaseModel):
    """
    Base class for target shapes.

    Fields are exposed to the model under lower camel case names
    (``job_title`` becomes ``jobTitle``) and unknown properties are rejected,
    so the generated schema and the deserializer agree on an exact structure.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class FieldType(str, Enum):
    """Supported field types for declarative shapes."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    STRING_LIST = "string_list"


_FIELD_PYTHON_TYPES: dict[FieldType, Any] = {
    FieldType.STRING: str,
    FieldType.INTEGER: int,
    FieldType.NUMBER: float,
    FieldType.BOOLEAN: bool,
    FieldType.DATE: datetime.date,
    FieldType.STRING_LIST: list[str],
}


class FieldDefinition(BaseModel):
    """
    Definition of a single field of a declarative shape.

    Attributes:
        name: Unique identifier for the field (snake_case, exposed as camelCase).
        type: The expected data type.
        description: Human-readable description to guide the model.
        nullable: Whether the model may return null when the value is absent.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique field identifier",
        examples=["job_title", "age"],
    )
    type: FieldType = Field(
        ...,
        description="Expected data type for the field",
    )
    description: str = Field(
        default="",
        max_length=500,
        description="Description to guide extraction",
    )
    nullable: bool = Field(
        default=False,
        description="Whether null is an acceptable value",
    )

    @field_validator("name")
    @classmethod
    def validate_name_format(cls, v: str) -> str:
        """Ensure field name is a valid identifier."""
        normalized = v.lower().replace("-", "_")
        if not normalized.isidentifier():
            raise ValueError(
                "Field name must contain only alphanumeric characters, underscores, or hyphens"
            )
        if normalized.startswith("_") or normalized.startswith("model_"):
            raise ValueError("Field name must not start with '_' or 'model_'")
        return normalized


class ShapeDefinition(BaseModel):
    """
    Declarative target shape, for callers that describe the structure at runtime.

    ``to_model()`` registers the shape once as an ExtractionModel subclass;
    equal definitions resolve to the same class, so schema caching keeps working.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Shape name",
        examples=["Person Profile"],
    )
    description: str = Field(default="", max_length=1000)
    fields: list[FieldDefinition] = Field(..., min_length=1)

    @field_validator("fields")
    @classmethod
    def validate_unique_field_names(
        cls, v: list[FieldDefinition]
    ) -> list[FieldDefinition]:
        """Ensure all field names are unique."""
        names = [f.name for f in v]
        if len(names) != len(set(names)):
            raise ValueError("All field names must be unique within a shape")
        return v

    def to_model(self) -> type[ExtractionModel]:
        """Return the pydantic model registered for this definition."""
        return _build_shape_model(self.model_dump_json())


@lru_cache(maxsize=None)
def _build_shape_model(definition_json: str) -> type[ExtractionModel]:
    definition = ShapeDefinition.model_validate(json.loads(definition_json))
    class_name = "".join(
        part[:1].upper() + part[1:]
        for part in re.split(r"[^0-9A-Za-z]+", definition.name)
        if part
    ) or "Shape"

    field_specs: dict[str, Any] = {}
    for field in definition.fields:
        python_type = _FIELD_PYTHON_TYPES[field.type]
        if field.nullable:
            field_specs[field.name] = (
                python_type | None,
                Field(default=None, description=field.description or None),
            )
        else:
            field_specs[field.name] = (
                python_type,
                Field(..., description=field.description or None),
            )

    model = create_model(class_name, __base__=ExtractionModel, **field_specs)
    if definition.description:
        model.__doc__ = definition.description
    return model


def resolve_shape(shape: Any) -> Any:
    """Map a ShapeDefinition to its registered model; other shapes pass through."""
    if isinstance(shape, ShapeDefinition):
        return shape.to_model()
    return shape


def shape_name(shape: Any) -> str:
    """Human readable name of a target shape, used in errors and logs."""
    shape = resolve_shape(shape)
    return getattr(shape, "__name__", None) or repr(shape)


@lru_cache(maxsize=None)
def get_type_adapter(shape: Any) -> TypeAdapter:
    """Cached TypeAdapter for a resolved shape (model, dataclass or TypedDict)."""
    return TypeAdapter(shape)


# =============================================================================
# Parse Inputs
# =============================================================================


class ImageDetailLevel(str, Enum):
    """Fidelity hint forwarded to the model for image inputs."""

    AUTO = "auto"
    LOW = "low"
    HIGH = "high"


class TextInput(BaseModel):
    """Free text to extract from."""

    kind: Literal["text"] = "text"
    text: str


class ImageUrlInput(BaseModel):
    """Image referenced by a remote (http/https) or data URL."""

    kind: Literal["image_url"] = "image_url"
    url: str
    detail: ImageDetailLevel | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an absolute http(s) URL or a data URL."""
        v = v.strip()
        parsed = urlparse(v)
        if parsed.scheme == "data" and v.startswith("data:image/"):
            return v
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return v
        raise ValueError(f"Image URL must be an absolute http(s) or data URL, got '{v}'")


class ImageBytesInput(BaseModel):
    """Inline image content with its declared MIME type."""

    kind: Literal["image_bytes"] = "image_bytes"
    data: bytes = Field(..., min_length=1)
    mime_type: str
    detail: ImageDetailLevel | None = None

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, v: str) -> str:
        """Only image MIME types are accepted (e.g. image/png)."""
        v = v.strip().lower()
        if not re.fullmatch(r"image/[a-z0-9.+-]+", v):
            raise ValueError(f"Unsupported image MIME type '{v}'")
        return v


ParseInput = Annotated[
    Union[TextInput, ImageUrlInput, ImageBytesInput],
    Field(discriminator="kind"),
]


# =============================================================================
# Completion Options
# =============================================================================


class CompletionOptions(BaseModel):
    """
    Sampling options applied to every completion request.

    Set ``temperature`` to None for models that reject the parameter.
    ``strict_schema`` switches the response format to strict enforcement;
    it stays off by default for broader model compatibility, which is why
    responses are validated after the call.
    """

    temperature: float | None = Field(default=0.0, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, gt=0.0, le=1.0)
    max_completion_tokens: int | None = Field(default=None, gt=0)
    seed: int | None = None
    strict_schema: bool = False

    def to_request_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``chat.completions.create`` (unset values omitted)."""
        return self.model_dump(exclude_none=True, exclude={"strict_schema"})
