from dataclasses import dataclass

import numpy as np
from PIL import Image

from heictojpeg.errors import ConversionError, ErrorKind
from heictojpeg.heif import ImageHandle

CHANNELS = {"RGB": 3, "RGBA": 4}


@dataclass(frozen=True)
class RgbRaster:
    """Tightly packed 8-bit RGB pixels, row after row with no padding."""

    width: int
    height: int
    data: bytes

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ConversionError(
                ErrorKind.RASTER_MALFORMED, f"empty raster {self.width}x{self.height}"
            )
        expected = self.width * self.height * 3
        if len(self.data) != expected:
            raise ConversionError(
                ErrorKind.RASTER_MALFORMED,
                f"{self.width}x{self.height} raster needs {expected} bytes, got {len(self.data)}",
            )


def compact_rows(data, width: int, height: int, stride: int, channels: int = 3) -> bytes:
    """
    Copy the first width*3 bytes of every stride-long row into a packed buffer.

    Decoders pad rows to an aligned stride; copying the buffer as a whole would
    turn the padding into pixels. With channels=4 the alpha samples are dropped.
    """
    if width <= 0 or height <= 0:
        raise ConversionError(ErrorKind.RASTER_MALFORMED, f"empty image {width}x{height}")
    row_bytes = width * channels
    if stride < row_bytes:
        raise ConversionError(
            ErrorKind.RASTER_MALFORMED, f"stride {stride} is shorter than a {row_bytes}-byte row"
        )
    plane = np.frombuffer(data, dtype=np.uint8)
    # the last row may stop right after its pixels
    needed = stride * (height - 1) + row_bytes
    if plane.size < needed:
        raise ConversionError(
            ErrorKind.RASTER_MALFORMED, f"plane holds {plane.size} bytes, {needed} needed"
        )
    rows = np.lib.stride_tricks.as_strided(plane, shape=(height, row_bytes), strides=(stride, 1))
    pixels = rows.reshape(height, width, channels)[:, :, :3]
    return np.ascontiguousarray(pixels).tobytes()


def convert_plane(data, mode: str, width: int, height: int, stride: int) -> bytes:
    """Expand a non-RGB interleaved plane (grayscale, grayscale + alpha, ...) to packed RGB."""
    if width <= 0 or height <= 0:
        raise ConversionError(ErrorKind.RASTER_MALFORMED, f"empty image {width}x{height}")
    try:
        img = Image.frombytes(mode, (width, height), bytes(data), "raw", mode, stride)
        return img.convert("RGB").tobytes()
    except (KeyError, OSError, ValueError) as e:
        raise ConversionError(
            ErrorKind.NO_INTERLEAVED_PLANE, f"decoder returned mode {mode}, which has no RGB conversion: {e}"
        ) from e


def decode_rgb(handle: ImageHandle) -> RgbRaster:
    plane = handle.decode()
    channels = CHANNELS.get(plane.mode)
    if channels is None:
        data = convert_plane(plane.data, plane.mode, plane.width, plane.height, plane.stride)
    else:
        data = compact_rows(plane.data, plane.width, plane.height, plane.stride, channels)
    return RgbRaster(plane.width, plane.height, data)
