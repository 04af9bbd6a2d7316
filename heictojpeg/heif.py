"""
Read-only view of a HEIF container.

Only the parts of ISO/IEC 23008-12 needed to convert a still image are read:
the `pitm` primary item, the `iinf` item types, the `iloc` item locations,
`cdsc` references from metadata items to images, and `idat` inline data.
Pixel decoding is delegated to pillow-heif.
"""
import io
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import pillow_heif

from heictojpeg.errors import ConversionError, ErrorKind

EXIF_TYPE = b"Exif"

# pillow-heif raises these for libheif errors (invalid input, truncated data, plugin errors)
DECODER_ERRORS = (EOFError, OSError, RuntimeError, ValueError)


class HeifFormatError(ValueError):
    """The container framing is broken."""


@dataclass(frozen=True)
class Box:
    type: bytes
    start: int  # payload start
    end: int


@dataclass
class ItemLocation:
    construction_method: int = 0
    base_offset: int = 0
    extents: List[Tuple[int, int]] = field(default_factory=list)


@dataclass(frozen=True)
class PlaneView:
    """Decoded image as handed back by the decoder: rows may be padded to `stride`."""

    mode: str
    width: int
    height: int
    stride: int
    data: bytes


def iter_boxes(data: bytes, start: int, end: int, strict: bool = True) -> Iterator[Box]:
    """
    Yield the boxes laid out back to back in data[start:end].

    With strict=False a box running past `end` stops the walk instead of raising,
    which is how a truncated trailing `mdat` is tolerated at the top level.
    """
    pos = start
    while pos + 8 <= end:
        size, box_type = struct.unpack_from(">I4s", data, pos)
        header = 8
        if size == 1:
            if pos + 16 > end:
                raise HeifFormatError(f"truncated large box header at offset {pos}")
            (size,) = struct.unpack_from(">Q", data, pos + 8)
            header = 16
        elif size == 0:
            size = end - pos
        if box_type == b"uuid":
            header += 16
        if size < header:
            raise HeifFormatError(f"invalid size {size} for box {box_type!r} at offset {pos}")
        if pos + size > end:
            if strict:
                raise HeifFormatError(f"box {box_type!r} at offset {pos} runs past the end of its parent")
            return
        yield Box(box_type, pos + header, pos + size)
        pos += size
    if strict and pos != end:
        raise HeifFormatError(f"{end - pos} trailing bytes at offset {pos}")


class _Reader:
    """Big-endian cursor over one box payload."""

    def __init__(self, data: bytes, start: int, end: int):
        self.data = data
        self.pos = start
        self.end = end

    def uint(self, size: int) -> int:
        if size == 0:
            return 0
        if self.pos + size > self.end:
            raise HeifFormatError(f"box payload truncated at offset {self.pos}")
        value = int.from_bytes(self.data[self.pos:self.pos + size], "big")
        self.pos += size
        return value

    def fourcc(self) -> bytes:
        if self.pos + 4 > self.end:
            raise HeifFormatError(f"box payload truncated at offset {self.pos}")
        value = bytes(self.data[self.pos:self.pos + 4])
        self.pos += 4
        return value

    def full_box_header(self) -> int:
        version = self.uint(1)
        self.uint(3)  # flags
        return version


class HeicSource:
    """
    An opened HEIF file.

    Parses the `meta` box eagerly; the pixel data stays in `data` until an
    ImageHandle asks pillow-heif to decode it.
    """

    def __init__(self, data: bytes, name: str = "<memory>"):
        self.data = data
        self.name = name
        self.primary_id: Optional[int] = None
        self.item_types: Dict[int, bytes] = {}
        self.locations: Dict[int, ItemLocation] = {}
        self.references: List[Tuple[bytes, int, List[int]]] = []
        self.idat: Optional[Box] = None
        self._parse()

    @classmethod
    def open(cls, path) -> "HeicSource":
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ConversionError(ErrorKind.INPUT_OPEN, f"cannot read {path}: {e}") from e
        try:
            return cls(data, name=str(path))
        except HeifFormatError as e:
            raise ConversionError(ErrorKind.DECODE_FAILED, f"{path}: {e}") from e

    def _parse(self) -> None:
        boxes = iter_boxes(self.data, 0, len(self.data), strict=False)
        first = next(boxes, None)
        if first is None or first.type != b"ftyp":
            raise HeifFormatError("missing ftyp box, not a HEIF file")
        for box in boxes:
            if box.type == b"meta":
                self._parse_meta(box)
                return
        raise HeifFormatError("missing meta box")

    def _parse_meta(self, meta: Box) -> None:
        reader = _Reader(self.data, meta.start, meta.end)
        reader.full_box_header()
        for box in iter_boxes(self.data, reader.pos, meta.end):
            if box.type == b"pitm":
                self._parse_pitm(box)
            elif box.type == b"iinf":
                self._parse_iinf(box)
            elif box.type == b"iloc":
                self._parse_iloc(box)
            elif box.type == b"iref":
                self._parse_iref(box)
            elif box.type == b"idat":
                self.idat = box

    def _parse_pitm(self, box: Box) -> None:
        reader = _Reader(self.data, box.start, box.end)
        version = reader.full_box_header()
        self.primary_id = reader.uint(2 if version == 0 else 4)

    def _parse_iinf(self, box: Box) -> None:
        reader = _Reader(self.data, box.start, box.end)
        version = reader.full_box_header()
        reader.uint(2 if version == 0 else 4)  # entry count, the child boxes are authoritative
        for entry in iter_boxes(self.data, reader.pos, box.end):
            if entry.type != b"infe":
                continue
            infe = _Reader(self.data, entry.start, entry.end)
            infe_version = infe.full_box_header()
            if infe_version < 2:
                # v0/v1 entries predate item types
                item_id = infe.uint(2)
                self.item_types[item_id] = b""
                continue
            item_id = infe.uint(2 if infe_version == 2 else 4)
            infe.uint(2)  # protection index
            self.item_types[item_id] = infe.fourcc()

    def _parse_iloc(self, box: Box) -> None:
        reader = _Reader(self.data, box.start, box.end)
        version = reader.full_box_header()
        sizes = reader.uint(1)
        offset_size, length_size = sizes >> 4, sizes & 0x0F
        sizes = reader.uint(1)
        base_offset_size = sizes >> 4
        index_size = sizes & 0x0F if version in (1, 2) else 0
        item_count = reader.uint(2 if version < 2 else 4)
        for _ in range(item_count):
            item_id = reader.uint(2 if version < 2 else 4)
            location = ItemLocation()
            if version in (1, 2):
                location.construction_method = reader.uint(2) & 0x0F
            reader.uint(2)  # data reference index
            location.base_offset = reader.uint(base_offset_size)
            for _ in range(reader.uint(2)):
                reader.uint(index_size)
                offset = reader.uint(offset_size)
                length = reader.uint(length_size)
                location.extents.append((offset, length))
            self.locations[item_id] = location

    def _parse_iref(self, box: Box) -> None:
        reader = _Reader(self.data, box.start, box.end)
        version = reader.full_box_header()
        id_size = 2 if version == 0 else 4
        for ref in iter_boxes(self.data, reader.pos, box.end):
            ref_reader = _Reader(self.data, ref.start, ref.end)
            from_id = ref_reader.uint(id_size)
            to_ids = [ref_reader.uint(id_size) for _ in range(ref_reader.uint(2))]
            self.references.append((ref.type, from_id, to_ids))

    def primary_image(self) -> "ImageHandle":
        if self.primary_id is None:
            raise ConversionError(ErrorKind.NO_PRIMARY_IMAGE, f"{self.name} has no pitm box")
        if self.primary_id not in self.item_types:
            raise ConversionError(
                ErrorKind.NO_PRIMARY_IMAGE,
                f"{self.name}: primary item {self.primary_id} is not listed in iinf",
            )
        return ImageHandle(self, self.primary_id)

    def item_data(self, item_id: int) -> bytes:
        location = self.locations.get(item_id)
        if location is None:
            raise HeifFormatError(f"item {item_id} has no iloc entry")
        if location.construction_method == 0:
            base, limit = 0, len(self.data)
        elif location.construction_method == 1:
            if self.idat is None:
                raise HeifFormatError(f"item {item_id} refers to a missing idat box")
            base, limit = self.idat.start, self.idat.end
        else:
            raise HeifFormatError(
                f"item {item_id} uses unsupported construction method {location.construction_method}"
            )
        chunks = []
        for offset, length in location.extents:
            start = base + location.base_offset + offset
            end = limit if length == 0 else start + length
            if start > limit or end > limit:
                raise HeifFormatError(f"item {item_id} extent runs past the end of the file")
            chunks.append(self.data[start:end])
        return b"".join(chunks)


class ImageHandle:
    """One image item of a HeicSource, plus the metadata items describing it."""

    def __init__(self, source: HeicSource, item_id: int):
        self.source = source
        self.item_id = item_id

    def metadata_block_ids(self, type_code: bytes = EXIF_TYPE) -> List[int]:
        described = set()
        for ref_type, from_id, to_ids in self.source.references:
            if ref_type == b"cdsc" and self.item_id in to_ids:
                described.add(from_id)
        return [
            item_id for item_id, item_type in self.source.item_types.items()
            if item_type == type_code and item_id in described
        ]

    def number_of_metadata_blocks(self, type_code: bytes = EXIF_TYPE) -> int:
        return len(self.metadata_block_ids(type_code))

    def metadata(self, item_id: int) -> bytes:
        return self.source.item_data(item_id)

    def decode(self) -> PlaneView:
        """
        Decode the image to interleaved 8-bit samples. A fresh decoder context per
        call; the HeifFile is dropped before returning, only the plane buffer is kept.
        """
        try:
            heif_file = pillow_heif.open_heif(io.BytesIO(self.source.data), convert_hdr_to_8bit=True)
        except DECODER_ERRORS as e:
            raise ConversionError(ErrorKind.DECODE_FAILED, f"{self.source.name}: {e}") from e
        try:
            width, height = heif_file.size
            plane = PlaneView(
                mode=heif_file.mode,
                width=width,
                height=height,
                stride=heif_file.stride,
                data=heif_file.data,
            )
        except DECODER_ERRORS as e:
            raise ConversionError(ErrorKind.DECODE_FAILED, f"{self.source.name}: {e}") from e
        finally:
            del heif_file
        return plane
