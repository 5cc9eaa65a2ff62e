"""Image list (manifest) reading and rendering."""

import logging
import re
from collections.abc import Iterable
from pathlib import Path

import aiofiles

from .exceptions import (
    EmptyManifestError,
    EmptyManifestFileError,
    ManifestEncodingError,
    ManifestNotFoundError,
)
from .utils.reference import validate_reference

logger = logging.getLogger(__name__)

Manifest = tuple[str, ...]

# Blank lines and lines whose first non-blank character is '#'
_SKIP_LINE = re.compile(r"^\s*(#|$)")


def parse_manifest(text: str) -> Manifest:
    """Parse newline-delimited image references.

    Comment and blank lines are dropped; every other line is kept verbatim.

    Args:
        text: Manifest file content

    Returns:
        Manifest: Image references in file order

    Raises:
        InvalidReferenceError: If a kept line is not a valid reference
    """
    return tuple(
        validate_reference(line)
        for line in text.splitlines()
        if not _SKIP_LINE.match(line)
    )


def check_manifest_file(path: Path) -> None:
    """Fail early when the images file is missing or has zero bytes."""
    if not path.is_file():
        raise ManifestNotFoundError(f"Images file '{path}' not found.")
    if path.stat().st_size == 0:
        raise EmptyManifestFileError(f"Images file '{path}' is empty.")


def _not_utf8(path: Path, error: UnicodeDecodeError) -> ManifestEncodingError:
    return ManifestEncodingError(
        f"Images file '{path}' is not valid UTF-8 text: {error}"
    )


def _require_entries(manifest: Manifest, path: Path) -> Manifest:
    if not manifest:
        raise EmptyManifestError(
            f"Images file '{path}' is empty or does not contain valid image names."
        )
    logger.info("Read %d image reference(s) from '%s'", len(manifest), path)
    return manifest


def read_manifest(path: str | Path) -> Manifest:
    """Read a manifest file.

    Args:
        path: Path to a UTF-8 text file with one image reference per line

    Returns:
        Manifest: Non-empty tuple of image references

    Raises:
        ManifestNotFoundError: If the file does not exist
        EmptyManifestFileError: If the file is zero bytes long
        ManifestEncodingError: If the file is not UTF-8 text
        EmptyManifestError: If no reference is left after filtering
    """
    path = Path(path)
    check_manifest_file(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise _not_utf8(path, e) from e
    return _require_entries(parse_manifest(text), path)


async def load_manifest(path: str | Path) -> Manifest:
    """Async variant of :func:`read_manifest`."""
    path = Path(path)
    check_manifest_file(path)
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            text = await f.read()
    except UnicodeDecodeError as e:
        raise _not_utf8(path, e) from e
    return _require_entries(parse_manifest(text), path)


def render_manifest(references: Iterable[str]) -> str:
    """Render references one per line, as stored in the archive."""
    return "".join(f"{ref}\n" for ref in references)
