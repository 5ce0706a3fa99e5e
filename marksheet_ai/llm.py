"""
Helpers around the OpenAI client: construction, file encoding and turning a
model's text output into JSON.
"""

from __future__ import annotations

import base64
import io
import json
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from openai import OpenAI, OpenAIError
from PIL import Image

from .settings import Settings
from .validation import validate_file_size, validate_file_type

logger = logging.getLogger(__name__)

MAX_IMAGE_SIDE = 2048
JPEG_QUALITY = 85


class AIServiceError(RuntimeError):
    """Raised when an AI call fails, is refused or returns unusable output."""


class InputFileError(RuntimeError):
    """Raised when a file cannot be sent to the AI service."""


@dataclass(frozen=True)
class InputFile:
    """A local file handed to an AI collaborator."""

    path: Path
    mime_type: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def resolved_mime_type(self) -> str:
        if self.mime_type:
            return self.mime_type.lower()
        guessed, _ = mimetypes.guess_type(self.path.name)
        return guessed or "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return self.resolved_mime_type.startswith("image/")


def build_openai_client(
    settings: Settings,
    *,
    max_connections: int = 10,
) -> OpenAI:
    """
    Instantiate an OpenAI client honouring the configured timeout and retry count.

    Retries use the SDK's exponential backoff; authentication and validation
    errors are not retried.
    """
    http_client = httpx.Client(
        timeout=settings.timeout,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
        ),
    )
    return OpenAI(
        api_key=settings.require_api_key(),
        max_retries=settings.max_retries,
        http_client=http_client,
    )


def check_input_file(source: InputFile) -> None:
    if not source.path.exists():
        raise InputFileError(f"File does not exist: {source.path}")
    if not validate_file_type(source.resolved_mime_type, source.name):
        raise InputFileError(f"Unsupported file type (expected JPEG, PNG or PDF): {source.name}")
    if not validate_file_size(source.path.stat().st_size):
        raise InputFileError(f"File is too large (max 20 MB): {source.name}")


def image_to_data_url(image_path: Path, *, max_side: int = MAX_IMAGE_SIDE) -> str:
    """
    Re-encode an image as JPEG, shrinking it so its longest side is at most
    `max_side`, and return it as a data URL.
    """
    with Image.open(image_path) as img:
        if img.mode != "RGB":
            img = img.convert("RGB")
        width, height = img.size
        scale = max(width, height) / float(max_side)
        if scale > 1.0:
            img = img.resize((int(width / scale), int(height / scale)), Image.LANCZOS)
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


def file_to_data_url(source: InputFile) -> str:
    encoded = base64.b64encode(source.path.read_bytes()).decode("ascii")
    return f"data:{source.resolved_mime_type};base64,{encoded}"


def file_input_content(source: InputFile) -> Dict[str, Any]:
    """
    Build the Responses API content part for `source`: inline image for
    pictures, inline file data for PDFs.
    """
    check_input_file(source)
    logger.debug(
        "Attaching %s (%s, %d bytes)",
        source.name,
        source.resolved_mime_type,
        source.path.stat().st_size,
    )
    if source.is_image:
        return {"type": "input_image", "image_url": image_to_data_url(source.path), "detail": "high"}
    return {"type": "input_file", "filename": source.name, "file_data": file_to_data_url(source)}


def call_json_model(
    client: OpenAI,
    *,
    instructions: str,
    content: List[Dict[str, Any]],
    model: str,
    user: Optional[str] = None,
) -> Any:
    """
    Send one user message and return the decoded JSON answer.

    Transport errors, timeouts, refusals and non-JSON output all surface as
    :class:`AIServiceError`.
    """
    logger.debug(
        "Calling %s",
        model,
        extra={"data": {"model": model, "instructions": instructions[:100], "parts": len(content)}},
    )
    try:
        response = client.responses.create(
            model=model,
            instructions=instructions,
            input=[{"role": "user", "content": content}],
            text={"format": {"type": "json_object"}},
            user=user,
        )
    except (OpenAIError, httpx.HTTPError) as exc:
        raise AIServiceError(f"AI request failed: {exc}") from exc

    raw_text = getattr(response, "output_text", "") or ""
    logger.debug("Model answered with %d characters", len(raw_text))
    return parse_json_output(raw_text)


def parse_json_output(raw_text: str) -> Any:
    """Decode a model answer, tolerating a surrounding Markdown code fence."""
    text = (raw_text or "").strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        closing = text.rfind("```")
        if first_newline != -1 and closing != -1 and closing > first_newline:
            text = text[first_newline + 1 : closing].strip()
    if not text:
        raise AIServiceError("The model returned an empty response.")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        snippet = text[max(0, exc.pos - 120) : exc.pos + 120]
        raise AIServiceError(
            f"The model returned invalid JSON at position {exc.pos}: {snippet!r}"
        ) from exc
