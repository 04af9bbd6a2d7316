"""
Batch side of the converter: finds the HEIC files, fans them out over a
thread pool and writes jpegs/logs.txt.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from rich.console import Console

from heictojpeg.convert import ConversionResult, try_convert

JPEG_DIR_NAME = "jpegs"
LOG_FILE_NAME = "logs.txt"
UNITS = ["B", "KB", "MB", "GB", "TB"]

logger = logging.getLogger("heictojpeg")
console = Console()


@dataclass(frozen=True)
class RunSummary:
    results: List[ConversionResult]
    duration: float

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def error_count(self) -> int:
        return len(self.results) - self.success_count


def find_heic_files(directory: Path) -> List[Path]:
    """All regular files in `directory` with a .heic extension (any case), sorted."""
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == ".heic")


def resolve_input(input_path: Path) -> Tuple[Path, List[Path]]:
    """Return the base directory for output and the files to convert."""
    if not input_path.exists():
        raise FileNotFoundError(f"No such file or directory: {input_path}")
    if input_path.is_dir():
        return input_path, find_heic_files(input_path)
    return input_path.parent, [input_path]


def ensure_jpeg_dir(base_dir: Path) -> Path:
    jpeg_dir = base_dir / JPEG_DIR_NAME
    jpeg_dir.mkdir(parents=True, exist_ok=True)
    return jpeg_dir


def jpeg_output_path(jpeg_dir: Path, heic_path: Path) -> Path:
    return jpeg_dir / f"{heic_path.stem}.jpg"


def human_readable_size(size_bytes: int) -> str:
    size = float(size_bytes)
    unit = 0
    while size >= 1024 and unit < len(UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{size_bytes}B"
    return f"{size:.1f}{UNITS[unit]}"


def format_duration(seconds: float) -> str:
    if seconds >= 1:
        return f"{seconds:.2f}s"
    if seconds >= 0.001:
        return f"{seconds * 1000:.2f}ms"
    return f"{seconds * 1_000_000:.2f}µs"


def _convert_one(heic_path: Path, jpeg_dir: Path) -> ConversionResult:
    console.print(f"Processing file: {heic_path.name}", markup=False)
    result = try_convert(heic_path, jpeg_output_path(jpeg_dir, heic_path))
    if result.ok:
        logger.debug(f"Converted {heic_path} -> {result.output_path}")
    else:
        logger.debug(f"Failed {heic_path}: {result.error}")
    return result


def process_files(heic_files: List[Path], jpeg_dir: Path, workers: int) -> List[ConversionResult]:
    """Convert the files in parallel. Results come back in the order of `heic_files`."""
    logger.info(f"Converting {len(heic_files)} file(s) with {workers} worker(s)")
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        return list(executor.map(lambda p: _convert_one(p, jpeg_dir), heic_files))


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def render_log(summary: RunSummary) -> str:
    lines = []
    total_heic_size = 0
    total_jpeg_size = 0

    for result in summary.results:
        name = result.input_path.name
        heic_size = _file_size(result.input_path)
        total_heic_size += heic_size
        if result.ok:
            jpeg_size = _file_size(result.output_path)
            total_jpeg_size += jpeg_size
            lines.append(
                f"{name} {human_readable_size(heic_size)} > Converted > "
                f"{JPEG_DIR_NAME}/{result.output_path.name} {human_readable_size(jpeg_size)}"
            )
        else:
            lines.append(f"{name} > Error: error details: {result.error}")

    file_count = len(summary.results)
    average = summary.duration / file_count if file_count else summary.duration

    lines.append("")
    lines.append(f"{file_count} Files")
    lines.append(f"Total Time Taken=={format_duration(summary.duration)}")
    lines.append(f"Average Time Per File=={format_duration(average)}")
    lines.append(f"Total HEIC File Size=={human_readable_size(total_heic_size)}")
    lines.append(f"Total JPEG Folder Size=={human_readable_size(total_jpeg_size)}")
    return "\n".join(lines)


def save_logs(jpeg_dir: Path, summary: RunSummary) -> Path:
    log_path = jpeg_dir / LOG_FILE_NAME
    console.print(f"Saving logs to {LOG_FILE_NAME}...")
    log_path.write_text(render_log(summary), encoding="utf-8")
    return log_path


def run_conversion(input_path: Path, workers: int) -> Optional[RunSummary]:
    """
    Convert a HEIC file, or every HEIC file in a directory, into <base>/jpegs/.

    Returns None when there was nothing to convert.
    """
    console.print("Starting the program...")
    base_dir, heic_files = resolve_input(input_path)

    if not heic_files:
        console.print("No HEIC files found.")
        return None

    console.print(f"Found {len(heic_files)} HEIC file(s)")

    jpeg_dir = ensure_jpeg_dir(base_dir)
    start = time.perf_counter()
    results = process_files(heic_files, jpeg_dir, workers)
    summary = RunSummary(results, time.perf_counter() - start)

    save_logs(jpeg_dir, summary)

    console.print(
        f"\n[bold]Program completed![/bold] [green]{summary.success_count} converted[/green], "
        f"[red]{summary.error_count} errors[/red], took {format_duration(summary.duration)}"
    )
    logger.info(f"{summary.success_count} converted, {summary.error_count} errors")
    return summary
