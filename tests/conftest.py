import io
import struct

import pillow_heif
import pytest
from PIL import Image

from heictojpeg.heif import HeicSource

pillow_heif.register_heif_opener()


def box(box_type: bytes, payload: bytes) -> bytes:
    return struct.pack(">I4s", 8 + len(payload), box_type) + payload


def full_box(box_type: bytes, version: int, payload: bytes) -> bytes:
    return box(box_type, bytes([version, 0, 0, 0]) + payload)


def infe(item_id: int, item_type: bytes) -> bytes:
    return full_box(b"infe", 2, struct.pack(">HH4s", item_id, 0, item_type) + b"\x00")


def build_heif(items, refs=(), primary_id=1, in_idat=True, truncate_meta=False) -> bytes:
    """
    Assemble a minimal HEIF container without pixel data.

    `items` is a list of (item_id, item_type, payload); `refs` a list of
    (ref_type, from_id, [to_ids]). Payloads go to an idat box, or to a trailing
    mdat box addressed by file offset when in_idat is False.
    """
    ftyp = box(b"ftyp", b"heic" + b"\x00\x00\x00\x00" + b"mif1heic")

    def meta_box(data_start: int) -> bytes:
        children = full_box(b"hdlr", 0, b"\x00" * 4 + b"pict" + b"\x00" * 12 + b"\x00")
        if primary_id is not None:
            children += full_box(b"pitm", 0, struct.pack(">H", primary_id))
        children += full_box(
            b"iinf", 0, struct.pack(">H", len(items)) + b"".join(infe(i, t) for i, t, _ in items)
        )
        iloc = bytes([0x44, 0x00]) + struct.pack(">H", len(items))
        offset = 0
        for item_id, _, payload in items:
            iloc += struct.pack(">HHH", item_id, 1 if in_idat else 0, 0)
            iloc += struct.pack(">HII", 1, data_start + offset, len(payload))
            offset += len(payload)
        children += full_box(b"iloc", 1, iloc)
        if refs:
            iref = b"".join(
                box(ref_type, struct.pack(">HH", from_id, len(to_ids)) + b"".join(struct.pack(">H", t) for t in to_ids))
                for ref_type, from_id, to_ids in refs
            )
            children += full_box(b"iref", 0, iref)
        if in_idat:
            children += box(b"idat", b"".join(p for _, _, p in items))
        return full_box(b"meta", 0, children)

    if in_idat:
        container = ftyp + meta_box(0)
    else:
        # offsets point past the 8-byte mdat header; the meta size does not depend on them
        meta_size = len(meta_box(0))
        container = ftyp + meta_box(len(ftyp) + meta_size + 8)
        container += box(b"mdat", b"".join(p for _, _, p in items))
    if truncate_meta:
        container = container[: len(ftyp) + 20]
    return container


MAKE = 271
ORIENTATION = 274


def tiff_exif(tags) -> bytes:
    """TIFF-structured EXIF bytes (no Exif\\0\\0 identifier) holding `tags` ({tag id: value})."""
    exif = Image.Exif()
    for tag, value in tags.items():
        exif[tag] = value
    raw = exif.tobytes()
    return raw[6:] if raw.startswith(b"Exif\x00\x00") else raw


def jpeg_bytes(size=(8, 8), color=(10, 200, 30), **save_kwargs) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG", quality=90, **save_kwargs)
    return buffer.getvalue()


def set_exif_orientation(path, orientation: int) -> None:
    """Rewrite the Orientation tag of a HEIC file's EXIF block in place."""
    data = bytearray(path.read_bytes())
    handle = HeicSource.open(path).primary_image()
    payload = handle.metadata(handle.metadata_block_ids()[0])
    start = data.find(payload)
    assert start >= 0
    tiff = start + 4 + int.from_bytes(payload[:4], "big")
    if data[tiff:tiff + 6] == b"Exif\x00\x00":
        tiff += 6
    order = "<" if data[tiff:tiff + 2] == b"II" else ">"
    (ifd,) = struct.unpack_from(order + "I", data, tiff + 4)
    (count,) = struct.unpack_from(order + "H", data, tiff + ifd)
    for i in range(count):
        entry = tiff + ifd + 2 + 12 * i
        (tag,) = struct.unpack_from(order + "H", data, entry)
        if tag == ORIENTATION:
            struct.pack_into(order + "H", data, entry + 8, orientation)
            path.write_bytes(bytes(data))
            return
    raise AssertionError(f"{path} has no Orientation tag")


@pytest.fixture
def make_heic(tmp_path):
    """Write a real HEIC file encoded by pillow-heif and return its path."""

    def _make(name="image.heic", size=(16, 16), color=(255, 0, 0), image=None, exif=None, **save_kwargs):
        img = image if image is not None else Image.new("RGB", size, color)
        path = tmp_path / name
        kwargs = {"quality": 90, **save_kwargs}
        if exif is not None:
            kwargs["exif"] = exif
        img.save(path, format="HEIF", **kwargs)
        return path

    return _make
