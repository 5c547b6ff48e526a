#!/usr/bin/env python3
"""
AI Product Image Generator

Generates square product cover images with gpt-image-1 from the product name
and description. The prompt is a static template (prompt-template.txt) with
the product details appended.
"""

import base64
import binascii
import io
import logging
import re
from pathlib import Path
from typing import Optional

import openai
from openai import OpenAI
from PIL import Image

from sync_errors import GenerationError, ServiceError

DEFAULT_TEMPLATE_PATH = Path("prompt-template.txt")

IMAGE_MODEL = "gpt-image-1"
IMAGE_SIZE = "1024x1024"

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_html(text: Optional[str]) -> str:
    """Replace markup tags with spaces and collapse whitespace."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", _TAG_RE.sub(" ", text)).strip()


def load_prompt_template(template_path: Path) -> str:
    """Read the prompt template, failing if it does not exist."""
    template_path = Path(template_path)
    if not template_path.exists():
        raise FileNotFoundError(f"Prompt template not found: {template_path.resolve()}")
    return template_path.read_text(encoding="utf-8").strip()


class ImageGenerator:
    """OpenAI image generation for product covers."""

    def __init__(
        self,
        api_key: str,
        template_path: Path = DEFAULT_TEMPLATE_PATH,
        client: Optional[OpenAI] = None,
    ):
        """
        Initialize the generator.

        Args:
            api_key: OpenAI API key
            template_path: Prompt template file
            client: Pre-built OpenAI client (mainly for tests)
        """
        self.template = load_prompt_template(template_path)
        self.client = client if client is not None else OpenAI(api_key=api_key)

    def build_prompt(self, name: str, description: Optional[str]) -> str:
        prompt = f"{self.template}\n\nProduct name: {name}"
        cleaned = strip_html(description)
        if cleaned:
            prompt += f"\nProduct description: {cleaned}"
        return prompt

    def generate(self, name: str, description: Optional[str]) -> bytes:
        """
        Generate one square PNG for a product.

        Returns:
            Raw PNG bytes

        Raises:
            ServiceError: If the OpenAI request fails
            GenerationError: If no usable image comes back
        """
        prompt = self.build_prompt(name, description)

        logging.info("Generating image with %s for '%s'...", IMAGE_MODEL, name)

        try:
            response = self.client.images.generate(
                model=IMAGE_MODEL,
                prompt=prompt,
                size=IMAGE_SIZE,
                output_format="png",
                n=1,
            )
        except openai.APIError as e:
            raise ServiceError(f"OpenAI image request failed: {e}", getattr(e, "status_code", None)) from e

        data = getattr(response, "data", None) or []
        b64 = data[0].b64_json if data else None
        if not b64:
            raise GenerationError("No image data returned from OpenAI")

        try:
            image_bytes = base64.b64decode(b64)
        except (binascii.Error, ValueError) as e:
            raise GenerationError(f"Image data from OpenAI is not valid base64: {e}") from e

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img.verify()
        except (OSError, SyntaxError, ValueError) as e:
            raise GenerationError(f"OpenAI returned data that is not an image: {e}") from e

        return image_bytes
