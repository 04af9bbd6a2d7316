from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from heictojpeg.decode import decode_rgb
from heictojpeg.encode import encode_jpeg
from heictojpeg.errors import ConversionError, ErrorKind
from heictojpeg.exif import inject_exif
from heictojpeg.heif import HeicSource
from heictojpeg.metadata import extract_exif


@dataclass(frozen=True)
class ConversionResult:
    input_path: Path
    output_path: Path
    error: Optional[ConversionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def convert(input_path: Path, output_path: Path) -> None:
    """
    Convert one HEIC file to a JPEG at `output_path`, keeping its EXIF block.

    Raises ConversionError naming the failing stage. Nothing is written unless
    every stage before the write succeeded.
    """
    source = HeicSource.open(input_path)
    handle = source.primary_image()
    exif = extract_exif(handle)
    raster = decode_rgb(handle)
    jpeg = inject_exif(encode_jpeg(raster), exif)
    try:
        with open(output_path, "wb") as f:
            f.write(jpeg)
    except OSError as e:
        raise ConversionError(ErrorKind.OUTPUT_WRITE, f"cannot write {output_path}: {e}") from e


def try_convert(input_path: Path, output_path: Path) -> ConversionResult:
    """Run convert() and fold its error into the result instead of raising."""
    try:
        convert(input_path, output_path)
    except ConversionError as e:
        return ConversionResult(Path(input_path), Path(output_path), e)
    return ConversionResult(Path(input_path), Path(output_path))
