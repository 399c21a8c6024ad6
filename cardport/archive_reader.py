"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

archive_reader.py

Open an Anki .apkg archive, detect its container format, and return the
embedded collection plus all media bytes.

Container formats (checked newest first):
- collection.anki21b  Anki 2.1.50+, zstd + protobuf   -> rejected as unsupported
- collection.anki21   Anki 2.1.x legacy 2              -> supported
- collection.anki2    Anki 2.0.x legacy 1              -> supported

Media layout: a JSON file named `media` maps numeric ZIP entry names to
original filenames ({"0": "dog.jpg", "1": "bark.mp3"}); each numeric entry
holds the raw bytes.

Usage:
    from cardport.archive_reader import ArchiveReader

    data = ArchiveReader().parse(Path("deck.apkg"))
"""

from __future__ import annotations

import io
import json
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, List, Optional, Union

from cardport.config import ImportConfig
from cardport.database_reader import DatabaseReader
from cardport.errors import CorruptArchive, UnsupportedFormat
from cardport.icons import WARNING
from cardport.models import ApkgData, ApkgFormat


ArchiveSource = Union[bytes, bytearray, str, Path, BinaryIO]

MEDIA_INDEX_NAME = "media"

# Detection order; the first hit wins
FORMAT_PRIORITY = (ApkgFormat.ANKI21B, ApkgFormat.ANKI21, ApkgFormat.ANKI2)


def detect_format(zf: zipfile.ZipFile) -> ApkgFormat:
    """
    Decide which container layout the archive uses.

    Returns the detected format even when it is unsupported; the caller
    decides what to do with it.

    Raises:
        UnsupportedFormat: If no known database file is present
    """
    names = set(zf.namelist())
    for fmt in FORMAT_PRIORITY:
        if fmt.db_filename in names:
            return fmt

    raise UnsupportedFormat(
        message="Unrecognised APKG archive: no collection database found",
        suggestion="Check that the file is an Anki deck export (.apkg)",
        context={"expected": ", ".join(f.db_filename for f in FORMAT_PRIORITY)},
    )


def safe_media_name(name: str) -> Optional[str]:
    """
    Reduce a media filename to a bare basename.

    Blocks absolute paths and parent-directory components carried in the
    media index. Returns None when nothing usable remains.
    """
    if not isinstance(name, str):
        return None
    cleaned = name.replace("\\", "/").replace("\0", "").strip()
    base = PurePosixPath(cleaned).name
    if base in ("", ".", ".."):
        return None
    return base


class ArchiveReader:
    """Read an .apkg archive into typed source records."""

    def __init__(self, config: Optional[ImportConfig] = None):
        self.config = config or ImportConfig()
        self.db_reader = DatabaseReader(verbose=self.config.verbose)

    def parse(self, source: ArchiveSource) -> ApkgData:
        """
        Parse an archive.

        Args:
            source: Archive bytes, a path, or a binary file object

        Returns:
            ApkgData with models, decks, notes, media and metadata

        Raises:
            CorruptArchive: If the ZIP cannot be opened or decompressed
            UnsupportedFormat: If no supported database file is present
            CorruptDatabase: If the embedded database is unreadable
        """
        zf = self._open_zip(source)

        with zf:
            fmt = detect_format(zf)
            print(f"[apkg] Detected format: {fmt.description}")

            if not fmt.supported:
                raise UnsupportedFormat(
                    message=f"Unsupported APKG format: {fmt.description}",
                    suggestion=fmt.unsupported_reason,
                    context={"database": fmt.db_filename},
                    format=fmt,
                )

            db_bytes = self._read_member(zf, fmt.db_filename)
            warnings: List[str] = []
            media = self._extract_media(zf, warnings)

        contents = self.db_reader.read(db_bytes)

        print(
            f"[apkg] Parsed archive: {len(contents.notes)} notes, "
            f"{len(media)} media files"
        )

        return ApkgData(
            format=fmt,
            models=contents.models,
            decks=contents.decks,
            notes=contents.notes,
            media=media,
            metadata=contents.metadata,
            warnings=warnings + contents.warnings,
        )

    # ------------------------------------------------------------------
    # ZIP helpers
    # ------------------------------------------------------------------

    def _open_zip(self, source: ArchiveSource) -> zipfile.ZipFile:
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(bytes(source))
        elif isinstance(source, str):
            source = Path(source)

        try:
            return zipfile.ZipFile(source, "r")
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
            raise CorruptArchive(
                message="Archive is not a readable ZIP file",
                suggestion="Check that the download completed and the file is an .apkg export",
                cause=e,
            )
        except OSError as e:
            raise CorruptArchive(
                message=f"Archive cannot be opened: {e}",
                cause=e,
            )

    def _read_member(self, zf: zipfile.ZipFile, name: str) -> bytes:
        try:
            return zf.read(name)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError) as e:
            raise CorruptArchive(
                message=f"Failed to decompress {name}",
                context={"member": name},
                cause=e,
            )

    def _extract_media(self, zf: zipfile.ZipFile, warnings: List[str]) -> Dict[str, bytes]:
        """Read the media index and every entry it references."""
        media: Dict[str, bytes] = {}

        def warn(message: str) -> None:
            warnings.append(message)
            print(f"[apkg:warn] {WARNING} {message}")

        names = set(zf.namelist())
        if MEDIA_INDEX_NAME not in names:
            warn("No media index found in archive")
            return media

        try:
            mapping = json.loads(self._read_member(zf, MEDIA_INDEX_NAME).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            warn(f"Media index is not valid JSON, media skipped: {e}")
            return media

        if not isinstance(mapping, dict):
            warn("Media index is not a JSON object, media skipped")
            return media

        max_size = self.config.max_media_size
        for index, filename in mapping.items():
            safe_name = safe_media_name(filename)
            if safe_name is None:
                warn(f"Skipping media entry {index} with unusable name: {filename!r}")
                continue

            if index not in names:
                warn(f"Media file missing: {safe_name} (entry {index})")
                continue

            info = zf.getinfo(index)
            if info.file_size > max_size:
                warn(
                    f"Skipping large media file: {safe_name} "
                    f"({info.file_size / (1024 * 1024):.1f} MB)"
                )
                continue

            media[safe_name] = self._read_member(zf, index)
            if self.config.verbose:
                print(f"[apkg] Extracted media: {safe_name} ({info.file_size} bytes)")

        return media
