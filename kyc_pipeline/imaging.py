"""Image processing utilities.

Crop, resize and re-encode operations on raw image bytes, backed by Pillow.
HEIC/HEIF input is decoded through pillow-heif.
"""

import io
from dataclasses import dataclass
from typing import Tuple

import pillow_heif
from PIL import Image, ImageOps, UnidentifiedImageError

pillow_heif.register_heif_opener()

JPEG_QUALITY = 95
SAVE_FORMATS = {"image/jpeg": "JPEG", "image/png": "PNG", "image/webp": "WEBP"}


class ImageProcessingError(Exception):
    """Exception raised when image bytes cannot be decoded or transformed."""
    pass


@dataclass(frozen=True)
class CropRect:
    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """Pillow (left, upper, right, lower) box"""
        return (self.left, self.top, self.left + self.width, self.top + self.height)


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode bytes into an RGB Pillow image"""
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageProcessingError(f"Failed to decode image data: {e}")
    return img.convert("RGB")


def image_size(image_bytes: bytes) -> Tuple[int, int]:
    """(width, height) of an encoded image"""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageProcessingError(f"Could not read image dimensions: {e}")


def encode(img: Image.Image, content_type: str = "image/jpeg", quality: int = JPEG_QUALITY) -> bytes:
    fmt = SAVE_FORMATS.get(content_type, "JPEG")
    buffer = io.BytesIO()
    if fmt == "PNG":
        img.save(buffer, fmt)
    else:
        img.save(buffer, fmt, quality=quality)
    return buffer.getvalue()


def crop(image_bytes: bytes, rect: CropRect, quality: int = JPEG_QUALITY) -> bytes:
    """Cut ``rect`` out of the image and return it as JPEG"""
    if rect.width <= 0 or rect.height <= 0:
        raise ImageProcessingError(f"Empty crop region {rect}")
    img = load_image(image_bytes)
    return encode(img.crop(rect.box), quality=quality)


def crop_and_resize(image_bytes: bytes, rect: CropRect, size: int, quality: int = JPEG_QUALITY) -> bytes:
    """Crop, then fill a ``size`` x ``size`` square (cover fit, centred)"""
    if rect.width <= 0 or rect.height <= 0:
        raise ImageProcessingError(f"Empty crop region {rect}")
    img = load_image(image_bytes).crop(rect.box)
    fitted = ImageOps.fit(img, (size, size), method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    return encode(fitted, quality=quality)


def exif_transpose(image_bytes: bytes, content_type: str = "image/jpeg", quality: int = JPEG_QUALITY) -> bytes:
    """Apply EXIF orientation and re-encode"""
    img = load_image_with_exif(image_bytes)
    return encode(ImageOps.exif_transpose(img).convert("RGB"), content_type, quality)


def mirror(image_bytes: bytes, content_type: str = "image/jpeg", quality: int = JPEG_QUALITY) -> bytes:
    """Flip horizontally and re-encode"""
    return encode(ImageOps.mirror(load_image(image_bytes)), content_type, quality)


def load_image_with_exif(image_bytes: bytes) -> Image.Image:
    # convert() drops EXIF, so orientation must be read from the raw image
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageProcessingError(f"Failed to decode image data: {e}")
    return img
