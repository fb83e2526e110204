"""
Prompt construction for structured extraction.

Builds the system message (role framing, anti-hallucination directive and the
optional considerations block) and the user message for text, image URL or
inline image inputs. Everything here is pure construction.
"""

import base64
import io
import logging
from typing import Any

from PIL import Image
from pydantic import ValidationError

from ...exceptions import InvalidInputError
from ...models import (
    ImageBytesInput,
    ImageDetailLevel,
    ImageUrlInput,
    ParseInput,
    TextInput,
)

logger = logging.getLogger(__name__)


# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT = """You are an analyst that needs to extract information from provided input
and then build a JSON object that contains all the relevant information.
Don't make stuff up. To build the JSON object use only data from the input
provided by the user."""

INPUT_BEGIN_MARKER = "---Begin input message---"
INPUT_END_MARKER = "---End input message---"

MAX_IMAGE_SIZE = 2048


def build_system_message(considerations: str | None = None) -> dict[str, Any]:
    """Build the system message, appending considerations verbatim when given."""
    system_text = SYSTEM_PROMPT
    if considerations and considerations.strip():
        system_text += (
            "\n\nConsiderations you have to take into account:\n"
            f"{considerations}\n"
            "End considerations."
        )
    return {"role": "system", "content": system_text}


# =============================================================================
# User Content
# =============================================================================


def _image_part(url: str, detail: ImageDetailLevel | None) -> dict[str, Any]:
    image_url: dict[str, Any] = {"url": url}
    if detail is not None:
        image_url["detail"] = detail.value
    return {"type": "image_url", "image_url": image_url}


def build_user_message(parse_input: ParseInput) -> dict[str, Any]:
    """
    Build the user message for a parse input.

    Text is wrapped between explicit begin/end markers so the model can tell
    instructions from content. Inline bytes are sent as a base64 data URL.
    """
    if isinstance(parse_input, TextInput):
        text = f"{INPUT_BEGIN_MARKER}\n{parse_input.text}\n{INPUT_END_MARKER}"
        part = {"type": "text", "text": text}
    elif isinstance(parse_input, ImageUrlInput):
        part = _image_part(parse_input.url, parse_input.detail)
    elif isinstance(parse_input, ImageBytesInput):
        encoded = base64.b64encode(parse_input.data).decode("utf-8")
        part = _image_part(f"data:{parse_input.mime_type};base64,{encoded}", parse_input.detail)
    else:
        raise InvalidInputError(f"Unsupported parse input: {type(parse_input).__name__}")

    return {"role": "user", "content": [part]}


def build_messages(
    parse_input: ParseInput,
    considerations: str | None = None,
) -> list[dict[str, Any]]:
    """Build the system/user message pair for one attempt."""
    return [build_system_message(considerations), build_user_message(parse_input)]


# =============================================================================
# Image Helpers
# =============================================================================


def encode_image(image: Image.Image) -> bytes:
    """Encode a PIL Image as PNG, downscaling to 2048px on the longest side."""
    if max(image.size) > MAX_IMAGE_SIZE:
        ratio = MAX_IMAGE_SIZE / max(image.size)
        new_size = (int(image.size[0] * ratio), int(image.size[1] * ratio))
        image = image.resize(new_size, Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def detect_image_mime_type(data: bytes) -> str:
    """Detect the MIME type of image bytes with Pillow."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except (OSError, Image.DecompressionBombError) as e:
        raise InvalidInputError("Cannot detect image MIME type: data is not a recognized image") from e

    mime_type = Image.MIME.get(image_format) if image_format else None
    if not mime_type:
        raise InvalidInputError(f"Cannot detect image MIME type for format '{image_format}'")
    return mime_type


def build_image_input(
    image: str | bytes | Image.Image,
    mime_type: str | None = None,
    detail: ImageDetailLevel | str | None = None,
) -> ImageUrlInput | ImageBytesInput:
    """
    Normalize a caller image into a tagged parse input.

    Args:
        image: Remote/data URL, raw image bytes, or a PIL Image.
        mime_type: MIME type of raw bytes; detected when omitted.
        detail: Optional fidelity hint (auto, low, high), passed through.

    Returns:
        ImageUrlInput for URLs, ImageBytesInput otherwise.

    Raises:
        InvalidInputError: If the URL, bytes or MIME type is unusable.
    """
    try:
        if isinstance(image, str):
            return ImageUrlInput(url=image, detail=detail)

        if isinstance(image, Image.Image):
            data = encode_image(image)
            mime_type = "image/png"
        elif isinstance(image, (bytes, bytearray, memoryview)):
            data = bytes(image)
        else:
            raise InvalidInputError(f"Unsupported image input: {type(image).__name__}")

        if mime_type is None:
            mime_type = detect_image_mime_type(data)
            logger.debug("Detected image MIME type: %s", mime_type)
        return ImageBytesInput(data=data, mime_type=mime_type, detail=detail)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid image input: {e}") from e
