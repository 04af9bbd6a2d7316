"""
JPEG marker segment handling and EXIF (APP1) injection.
"""
import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple

from heictojpeg.errors import ConversionError, ErrorKind

SOI = b"\xff\xd8"
EOI = b"\xff\xd9"
APP1 = 0xE1
SOS = 0xDA
EXIF_HEADER = b"Exif\x00\x00"

# 16-bit length field, which counts itself and the identifier
MAX_EXIF_PAYLOAD = 0xFFFF - 2 - len(EXIF_HEADER)

# markers carrying no length field
STANDALONE_MARKERS = {0x01} | set(range(0xD0, 0xD8))


@dataclass(frozen=True)
class Segment:
    marker: int
    payload: bytes = b""

    @property
    def is_exif(self) -> bool:
        return self.marker == APP1 and self.payload.startswith(EXIF_HEADER)

    def to_bytes(self) -> bytes:
        if self.marker in STANDALONE_MARKERS:
            return bytes((0xFF, self.marker))
        return struct.pack(">BBH", 0xFF, self.marker, len(self.payload) + 2) + self.payload


def _invalid(detail: str) -> ConversionError:
    return ConversionError(ErrorKind.INVALID_JPEG, detail)


def parse_segments(data: bytes) -> Tuple[List[Segment], bytes]:
    """
    Split a JPEG stream into its header segments (SOS included) and the bytes after
    the SOS header: entropy-coded data, any further scans, and the final EOI.
    """
    if not data.startswith(SOI):
        raise _invalid("stream does not start with SOI")
    segments = []
    pos = len(SOI)
    while True:
        if pos + 2 > len(data) or data[pos] != 0xFF:
            raise _invalid(f"expected a marker at offset {pos}")
        # fill bytes
        while pos + 1 < len(data) and data[pos + 1] == 0xFF:
            pos += 1
        if pos + 2 > len(data):
            raise _invalid("stream ends inside a marker")
        marker = data[pos + 1]
        if marker in STANDALONE_MARKERS:
            segments.append(Segment(marker))
            pos += 2
            continue
        if marker == EOI[1]:
            raise _invalid(f"EOI at offset {pos} before any scan")
        if pos + 4 > len(data):
            raise _invalid(f"segment header truncated at offset {pos}")
        (length,) = struct.unpack_from(">H", data, pos + 2)
        end = pos + 2 + length
        if length < 2 or end > len(data):
            raise _invalid(f"segment 0x{marker:02X} at offset {pos} has bad length {length}")
        segments.append(Segment(marker, bytes(data[pos + 4:end])))
        pos = end
        if marker == SOS:
            break
    scan = bytes(data[pos:])
    if not scan.endswith(EOI):
        raise _invalid("stream does not end with EOI")
    return segments, scan


def find_exif_segments(data: bytes) -> List[bytes]:
    """Return the payload of every APP1 EXIF segment, identifier stripped."""
    segments, _ = parse_segments(data)
    return [s.payload[len(EXIF_HEADER):] for s in segments if s.is_exif]


def inject_exif(jpeg: bytes, exif: Optional[bytes]) -> bytes:
    """
    Place `exif` in a single APP1 segment right after SOI, replacing any EXIF
    segment the stream already has. Without EXIF the stream is returned untouched.
    """
    if exif is None:
        return jpeg
    segments, scan = parse_segments(jpeg)
    if len(exif) > MAX_EXIF_PAYLOAD:
        raise ConversionError(
            ErrorKind.EXIF_TOO_LARGE,
            f"EXIF payload is {len(exif)} bytes, an APP1 segment holds at most {MAX_EXIF_PAYLOAD}",
        )
    app1 = Segment(APP1, EXIF_HEADER + exif)
    kept = [s for s in segments if not s.is_exif]
    return SOI + b"".join(s.to_bytes() for s in [app1] + kept) + scan
