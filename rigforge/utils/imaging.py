"""Image helpers — base64 PNG in/out, pixel arrays, content digests."""

from __future__ import annotations

import base64
import binascii
import hashlib
import io

import numpy as np
from numpy.typing import NDArray
from PIL import Image, UnidentifiedImageError

# Hex characters kept from a sha256 digest
_DIGEST_LEN = 16


def digest(text: str | bytes) -> str:
    """Short stable content digest used in call logs and refinement traces."""
    raw = text.encode("utf-8") if isinstance(text, str) else text
    return hashlib.sha256(raw).hexdigest()[:_DIGEST_LEN]


def _strip_data_url(data: str) -> str:
    if data.startswith("data:") and "," in data:
        return data.split(",", 1)[1]
    return data


def decode_image(data: str) -> Image.Image:
    """Base64 (or data URL) PNG/JPEG → RGBA Pillow image. ``ValueError`` if undecodable."""
    try:
        raw = base64.b64decode(_strip_data_url(data), validate=False)
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (binascii.Error, UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Could not decode image: {e}") from e
    return image.convert("RGBA")


def encode_png(image: Image.Image) -> str:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def image_size(data: str) -> tuple[int, int]:
    """(width, height) of a base64 image."""
    return decode_image(data).size


def to_array(image: Image.Image) -> NDArray[np.uint8]:
    return np.array(image.convert("RGBA"))
