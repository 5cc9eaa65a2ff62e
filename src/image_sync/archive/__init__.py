"""Air-gapped archive codec."""

from .models import ArchiveContents, ExtractedArchive, archive_name
from .reader import ArchiveReader, read_archive
from .writer import ArchiveWriter, write_archive

__all__ = [
    "ArchiveContents",
    "ArchiveReader",
    "ArchiveWriter",
    "ExtractedArchive",
    "archive_name",
    "read_archive",
    "write_archive",
]
