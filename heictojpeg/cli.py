"""
📸 heictojpeg - convert a HEIC file, or a directory of them, to JPEG.

Converted files land in a `jpegs/` directory next to the sources, together
with a `logs.txt` summary. EXIF metadata is carried over.
"""
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from heictojpeg import __version__
from heictojpeg.config import Settings
from heictojpeg.driver import run_conversion

PROG_NAME = "heictojpeg"

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()
logger = logging.getLogger("heictojpeg")

# typer may bundle its own copy of click; catch the usage errors it actually raises
click_exceptions = sys.modules[typer.BadParameter.__module__]


def setup_logging(log_level: str = "WARNING") -> None:
    """Send heictojpeg log records to the console."""
    logger.setLevel(getattr(logging, log_level.upper(), logging.WARNING))
    logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)


def print_error(error: str) -> None:
    console.print(f"[red]Problem parsing arguments: {escape(error)}[/red]")


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{PROG_NAME} {__version__}")
        raise typer.Exit()


@app.command()
def heictojpeg(
    path: Path = typer.Argument(
        Path("."),
        help="Directory of HEIC files or a single HEIC file (defaults to the current directory).",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Print version information.",
    ),
):
    """
    Convert HEIC images to JPEG, keeping their EXIF data.

    Converted files are saved to a 'jpegs/' subdirectory alongside the sources.
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger.debug(f"Settings: {settings}")

    try:
        run_conversion(path, settings.workers)
    except FileNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(code=1)


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point. Argument errors exit with status 1."""
    command = typer.main.get_command(app)
    try:
        return command.main(args=argv, prog_name=PROG_NAME, standalone_mode=False) or 0
    except click_exceptions.ClickException as e:
        print_error(e.format_message())
        typer.echo(command.get_help(typer.Context(command, info_name=PROG_NAME)))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
