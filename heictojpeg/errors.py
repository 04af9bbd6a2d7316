from enum import Enum


class ErrorKind(str, Enum):
    INPUT_OPEN = "input-open"
    NO_PRIMARY_IMAGE = "no-primary-image"
    DECODE_FAILED = "decode-failed"
    NO_INTERLEAVED_PLANE = "no-interleaved-plane"
    RASTER_MALFORMED = "raster-malformed"
    ENCODE_FAILED = "encode-failed"
    INVALID_JPEG = "invalid-jpeg"
    EXIF_TOO_LARGE = "exif-too-large"
    OUTPUT_WRITE = "output-write"


class ConversionError(Exception):
    """A conversion stage failed. Carries the failing kind and a readable detail."""

    def __init__(self, kind: ErrorKind, detail: str):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail
