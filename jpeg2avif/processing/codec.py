"""Pillow-based decode, resize and AVIF encode.

All functions here are synchronous and CPU bound; the pipeline runs them in
worker threads.
"""

import io
from dataclasses import dataclass
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from jpeg2avif.errors import DecodeFailed

# Pillow's AVIF encoder accepts these directly; anything else is converted
_ENCODABLE_MODES = {"RGB", "RGBA", "L"}

# Source metadata that must never reach an encoded variant
_STRIPPED_INFO_KEYS = ("exif", "xmp", "XML:com.adobe.xmp", "comment")


@dataclass
class DecodedImage:
    image: Image.Image
    width: int
    height: int
    format: str


def decode_image(payload: bytes) -> DecodedImage:
    """Decode *payload* fully into memory.

    EXIF orientation is applied to the pixels (the Orientation tag itself is
    not carried forward), so width/height are the displayed dimensions.
    """
    try:
        with Image.open(io.BytesIO(payload)) as src:
            src_format = src.format or "unknown"
            src.load()
            image = ImageOps.exif_transpose(src)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeFailed(f"Could not decode image: {exc}") from exc

    if image.mode not in _ENCODABLE_MODES:
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    for key in _STRIPPED_INFO_KEYS:
        image.info.pop(key, None)

    width, height = image.size
    return DecodedImage(image=image, width=width, height=height, format=src_format)


def scale_to_fit(image: Image.Image, max_size: Tuple[int, int]) -> Image.Image:
    """Resize so the image fits inside *max_size*, keeping aspect ratio.

    Small images are enlarged to fit as well, not just shrunk.
    """
    resized = ImageOps.contain(image, max_size, method=Image.Resampling.LANCZOS)
    for key in _STRIPPED_INFO_KEYS:
        resized.info.pop(key, None)
    return resized


def encode_avif(image: Image.Image, quality: int, speed: int = 6) -> bytes:
    """Encode to AVIF with no embedded EXIF/XMP."""
    buf = io.BytesIO()
    image.save(buf, format="AVIF", quality=quality, speed=speed, exif=b"", xmp=b"")
    return buf.getvalue()


def render_thumbnail(image: Image.Image, max_dimension: int, quality: int, speed: int = 6) -> bytes:
    return encode_avif(scale_to_fit(image, (max_dimension, max_dimension)), quality=quality, speed=speed)
