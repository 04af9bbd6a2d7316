"""
HEIC to JPEG converter that keeps the EXIF metadata.
"""
from heictojpeg.convert import ConversionResult, convert, try_convert
from heictojpeg.errors import ConversionError, ErrorKind

__version__ = "0.3.0"

__all__ = [
    "ConversionError",
    "ConversionResult",
    "ErrorKind",
    "convert",
    "try_convert",
    "__version__",
]
