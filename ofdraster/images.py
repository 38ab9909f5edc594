"""Image decoding and resampling

Decoders turn an `ImageResource` into a `DecodedImage`: float64 pixels with
`(height, width, channels)` shape and values in [0, 1]. Channel layouts are
gray (1), gray with alpha (2), RGB (3) and RGBA (4). Pixels are straight
alpha unless `premultiplied` is set.
"""
from __future__ import annotations

import io
from typing import Callable, Dict, NamedTuple, Protocol

import numpy as np
import PIL.Image

from .errors import ImageDecodeError
from .geometry import FLOAT, FNDArray
from .log import get_logger
from .resources import ImageResource

LOGGER = get_logger(__name__)

SAMPLING_NEAREST = "nearest"
SAMPLING_BILINEAR = "bilinear"


class DecodedImage(NamedTuple):
    pixels: FNDArray
    premultiplied: bool = False

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return self.pixels.shape[2]

    def rgba(self) -> FNDArray:
        """Pixels expanded to RGBA layout"""
        pixels = self.pixels
        channels = self.channels
        if channels == 4:
            return pixels
        elif channels == 3:
            alpha = np.ones(pixels.shape[:2] + (1,), dtype=FLOAT)
            return np.concatenate([pixels, alpha], axis=2)
        elif channels == 2:
            return pixels[..., [0, 0, 0, 1]]
        elif channels == 1:
            alpha = np.ones(pixels.shape[:2] + (1,), dtype=FLOAT)
            return np.concatenate([pixels, pixels, pixels, alpha], axis=2)
        raise ImageDecodeError(f"unsupported channel layout: {channels} channels")

    def __repr__(self):
        return "DecodedImage(w={}, h={}, c={}, premultiplied={})".format(
            self.width, self.height, self.channels, self.premultiplied
        )


class ImageDecoder(Protocol):
    def decode(self, image: ImageResource) -> DecodedImage:
        """Decode image resource, raises `ImageDecodeError`"""
        ...


class PillowImageDecoder:
    """Decode raster formats supported by Pillow (PNG, JPEG, BMP, GIF, TIFF)"""

    def decode(self, image: ImageResource) -> DecodedImage:
        if not image.data:
            raise ImageDecodeError(f"image `{image.id}` has no data ({image.file})")
        try:
            with PIL.Image.open(io.BytesIO(image.data)) as source:
                rgba = source.convert("RGBA")
        except (PIL.UnidentifiedImageError, PIL.Image.DecompressionBombError, OSError, ValueError) as error:
            raise ImageDecodeError(f"failed to decode image `{image.id}`: {error}") from error
        pixels = np.asarray(rgba, dtype=FLOAT) / 255.0
        if pixels.ndim != 3 or pixels.size == 0:
            raise ImageDecodeError(f"image `{image.id}` is empty")
        LOGGER.debug("decoded image `%s`: %dx%d", image.id, rgba.width, rgba.height)
        return DecodedImage(pixels)


# ------------------------------------------------------------------------------
# Sampling
# ------------------------------------------------------------------------------
def sample_nearest(pixels: FNDArray, u: FNDArray, v: FNDArray) -> FNDArray:
    """Sample pixels at image coordinates `(u, v)` (pixel `(i, j)` covers [i, i+1))"""
    h, w = pixels.shape[:2]
    cols = np.clip(np.floor(u), 0, w - 1).astype(int)
    rows = np.clip(np.floor(v), 0, h - 1).astype(int)
    return pixels[rows, cols]


def sample_bilinear(pixels: FNDArray, u: FNDArray, v: FNDArray) -> FNDArray:
    """Bilinear interpolation between pixel centres, clamped at image edges"""
    h, w = pixels.shape[:2]
    x = np.clip(u - 0.5, 0, w - 1)
    y = np.clip(v - 0.5, 0, h - 1)
    x0 = np.floor(x).astype(int)
    y0 = np.floor(y).astype(int)
    x1 = np.minimum(x0 + 1, w - 1)
    y1 = np.minimum(y0 + 1, h - 1)
    fx = (x - x0)[..., None]
    fy = (y - y0)[..., None]
    top = pixels[y0, x0] * (1 - fx) + pixels[y0, x1] * fx
    bottom = pixels[y1, x0] * (1 - fx) + pixels[y1, x1] * fx
    return top * (1 - fy) + bottom * fy


SAMPLERS: Dict[str, Callable[[FNDArray, FNDArray, FNDArray], FNDArray]] = {
    SAMPLING_NEAREST: sample_nearest,
    SAMPLING_BILINEAR: sample_bilinear,
}
