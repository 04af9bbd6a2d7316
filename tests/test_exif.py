import io

import pytest
from PIL import Image

from conftest import MAKE, ORIENTATION, jpeg_bytes, tiff_exif
from heictojpeg.errors import ConversionError, ErrorKind
from heictojpeg.exif import (
    EXIF_HEADER,
    MAX_EXIF_PAYLOAD,
    Segment,
    find_exif_segments,
    inject_exif,
    parse_segments,
)

XMP = Segment(0xE1, b"http://ns.adobe.com/xap/1.0/\x00<x:xmpmeta/>")


def pixels(data: bytes) -> bytes:
    with Image.open(io.BytesIO(data)) as img:
        return img.convert("RGB").tobytes()


def test_no_exif_returns_stream_unchanged():
    jpeg = jpeg_bytes()
    assert inject_exif(jpeg, None) is jpeg


def test_app1_follows_soi():
    exif = tiff_exif({MAKE: "TestCam"})
    out = inject_exif(jpeg_bytes(), exif)
    assert out[:2] == b"\xff\xd8"
    assert out[2:4] == b"\xff\xe1"
    length = int.from_bytes(out[4:6], "big")
    assert length == 2 + len(EXIF_HEADER) + len(exif)
    assert out[6:12] == EXIF_HEADER
    assert out[12:12 + len(exif)] == exif
    assert find_exif_segments(out) == [exif]


def test_pixels_unchanged():
    jpeg = jpeg_bytes(size=(24, 16))
    out = inject_exif(jpeg, tiff_exif({MAKE: "TestCam"}))
    assert pixels(out) == pixels(jpeg)
    assert out.endswith(b"\xff\xd9")


def test_existing_exif_is_replaced():
    old = Image.Exif()
    old[MAKE] = "OldCam"
    jpeg = jpeg_bytes(exif=old.tobytes())
    assert len(find_exif_segments(jpeg)) == 1

    new = tiff_exif({MAKE: "NewCam"})
    out = inject_exif(jpeg, new)
    assert find_exif_segments(out) == [new]
    with Image.open(io.BytesIO(out)) as img:
        assert img.getexif()[MAKE] == "NewCam"


def test_injection_is_idempotent():
    exif = tiff_exif({MAKE: "TestCam"})
    once = inject_exif(jpeg_bytes(), exif)
    assert inject_exif(once, exif) == once


def test_other_app1_segments_are_kept():
    jpeg = jpeg_bytes()
    segments, scan = parse_segments(jpeg)
    # XMP between the tables and the scan header
    with_xmp = b"\xff\xd8" + b"".join(s.to_bytes() for s in segments[:-1] + [XMP, segments[-1]]) + scan
    out = inject_exif(with_xmp, tiff_exif({MAKE: "TestCam"}))
    out_segments, _ = parse_segments(out)
    assert out_segments[0].is_exif
    assert XMP in out_segments


def test_orientation_survives():
    out = inject_exif(jpeg_bytes(), tiff_exif({ORIENTATION: 6}))
    with Image.open(io.BytesIO(out)) as img:
        assert img.getexif()[ORIENTATION] == 6


def test_largest_payload_fits():
    exif = b"MM\x00*" + b"\x00" * (MAX_EXIF_PAYLOAD - 4)
    assert len(exif) == 65527
    out = inject_exif(jpeg_bytes(), exif)
    assert out[4:6] == b"\xff\xff"
    assert find_exif_segments(out) == [exif]


def test_oversized_payload_fails():
    exif = b"MM\x00*" + b"\x00" * (65528 - 4)
    with pytest.raises(ConversionError) as excinfo:
        inject_exif(jpeg_bytes(), exif)
    assert excinfo.value.kind == ErrorKind.EXIF_TOO_LARGE


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"not a jpeg at all",
        b"\xff\xd8\xff\xe0\x00",  # truncated header
        b"\xff\xd8\xff\xe0\x00\x40JFIF",  # length past the end
        b"\xff\xd8\xff\xd9",  # no scan
    ],
)
def test_invalid_jpeg(data):
    with pytest.raises(ConversionError) as excinfo:
        inject_exif(data, b"MM\x00*")
    assert excinfo.value.kind == ErrorKind.INVALID_JPEG


def test_missing_eoi_is_invalid():
    with pytest.raises(ConversionError) as excinfo:
        inject_exif(jpeg_bytes()[:-2], b"MM\x00*")
    assert excinfo.value.kind == ErrorKind.INVALID_JPEG


def test_segment_round_trip_preserves_stream():
    jpeg = jpeg_bytes(size=(9, 5))
    segments, scan = parse_segments(jpeg)
    assert segments[-1].marker == 0xDA
    assert b"\xff\xd8" + b"".join(s.to_bytes() for s in segments) + scan == jpeg
