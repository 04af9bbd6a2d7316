import io

from PIL import Image

from heictojpeg.decode import RgbRaster
from heictojpeg.errors import ConversionError, ErrorKind

# Fixed on purpose: the output is for compatibility, not for tuning.
JPEG_QUALITY = 95


def encode_jpeg(raster: RgbRaster) -> bytes:
    """Encode a raster as a baseline JPEG with the standard Huffman tables."""
    try:
        img = Image.frombytes("RGB", (raster.width, raster.height), raster.data)
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    except (OSError, ValueError) as e:
        raise ConversionError(ErrorKind.ENCODE_FAILED, str(e)) from e
    return buffer.getvalue()
