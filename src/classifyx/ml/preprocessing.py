"""Image preprocessing pipeline.

Decoding with EXIF orientation, upright rotation, crop/scale to the model's
input geometry, and conversion to a normalized NCHW float tensor.
"""

from __future__ import annotations

import io
from enum import IntEnum
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from classifyx.ml.errors import InvalidInputError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import CropAndScale

EXIF_ORIENTATION_TAG: int = 0x0112


class Orientation(IntEnum):
    """EXIF orientation codes: how stored pixels map to upright content."""

    UP = 1
    UP_MIRRORED = 2
    DOWN = 3
    DOWN_MIRRORED = 4
    LEFT_MIRRORED = 5
    RIGHT = 6
    RIGHT_MIRRORED = 7
    LEFT = 8


_UPRIGHT_TRANSPOSE: dict[Orientation, Image.Transpose] = {
    Orientation.UP_MIRRORED: Image.Transpose.FLIP_LEFT_RIGHT,
    Orientation.DOWN: Image.Transpose.ROTATE_180,
    Orientation.DOWN_MIRRORED: Image.Transpose.FLIP_TOP_BOTTOM,
    Orientation.LEFT_MIRRORED: Image.Transpose.TRANSPOSE,
    Orientation.RIGHT: Image.Transpose.ROTATE_270,
    Orientation.RIGHT_MIRRORED: Image.Transpose.TRANSVERSE,
    Orientation.LEFT: Image.Transpose.ROTATE_90,
}


def decode_image(image_bytes: bytes, max_pixels: int) -> tuple[NDArray[np.uint8], Orientation]:
    """Decode raw image bytes into RGB pixels plus their EXIF orientation.

    The pixels are returned as stored; the orientation says how to make
    them upright.

    Raises:
        InvalidInputError: If the bytes are empty, undecodable, or exceed ``max_pixels``.
    """
    if not image_bytes:
        raise InvalidInputError("Image is empty")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if img.width * img.height > max_pixels:
                raise InvalidInputError(f"Image has {img.width * img.height} pixels, limit is {max_pixels}")
            raw_orientation = img.getexif().get(EXIF_ORIENTATION_TAG, Orientation.UP)
            pixels = np.array(img.convert("RGB"), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise InvalidInputError(f"Cannot decode image: {exc}") from exc

    try:
        orientation = Orientation(raw_orientation)
    except ValueError:
        orientation = Orientation.UP
    return pixels, orientation


def to_rgb(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Normalize grayscale, single-channel and RGBA arrays to HxWx3."""
    if image.ndim == 2:
        return np.repeat(image[:, :, np.newaxis], 3, axis=2)
    channels = image.shape[2]
    if channels == 1:
        return np.repeat(image, 3, axis=2)
    if channels == 4:
        return np.ascontiguousarray(image[:, :, :3])
    return image


def apply_orientation(image: NDArray[np.uint8], orientation: Orientation) -> NDArray[np.uint8]:
    """Rotate/flip stored pixels so the content is upright."""
    transpose = _UPRIGHT_TRANSPOSE.get(orientation)
    if transpose is None:
        return image
    return np.asarray(Image.fromarray(image).transpose(transpose))


def crop_and_scale(
    image: NDArray[np.uint8],
    size: tuple[int, int],
    mode: CropAndScale = "center_crop",
) -> NDArray[np.uint8]:
    """Fit an HxWx3 image to ``size`` (height, width).

    - ``center_crop``: take the largest centered region with the target's
      aspect ratio, then scale it to the target.
    - ``scale_fit``: scale until the image fits, pad the borders with black.
    - ``scale_fill``: stretch to the target, ignoring aspect ratio.
    """
    target_h, target_w = size
    height, width = image.shape[:2]
    pil = Image.fromarray(image)

    if mode == "scale_fill":
        return np.asarray(pil.resize((target_w, target_h), Image.Resampling.BILINEAR))

    if mode == "center_crop":
        # Crop box is in source pixels; only the crop is resampled.
        return np.asarray(ImageOps.fit(pil, (target_w, target_h), Image.Resampling.BILINEAR))

    ratio = min(target_w / width, target_h / height)
    new_w = max(1, round(width * ratio))
    new_h = max(1, round(height * ratio))
    resized = np.asarray(pil.resize((new_w, new_h), Image.Resampling.BILINEAR))

    canvas = np.zeros((target_h, target_w, 3), dtype=np.uint8)
    top = (target_h - new_h) // 2
    left = (target_w - new_w) // 2
    canvas[top : top + new_h, left : left + new_w] = resized[:target_h, :target_w]
    return canvas


def to_input_tensor(
    image: NDArray[np.uint8],
    mean: tuple[float, float, float],
    std: tuple[float, float, float],
) -> NDArray[np.float32]:
    """Convert HxWx3 uint8 pixels to a normalized (1, 3, H, W) float32 tensor."""
    scaled = image.astype(np.float32) / 255.0
    normalized = (scaled - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
    return np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)
