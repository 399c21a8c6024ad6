"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

media_processor.py

Persist the media files of one archive through a storage adapter and
build the media manifest.

Deduplication is by destination path only: a file already present at
the path computed from its original name is recorded but not rewritten.
There is no global content-hash index, so two names with identical bytes
are stored twice. Distinct names that sanitize to the same path in one
run get separate files.

Usage:
    from cardport.media_processor import MediaProcessor

    result = MediaProcessor(storage).process(apkg.media, "Spanish Verbs")
    result.manifest.lookup("dog.jpg").saved_path
"""

from __future__ import annotations

import hashlib
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Set

from cardport.config import ImportConfig
from cardport.errors import MediaStorageError
from cardport.icons import ERROR, SUCCESS
from cardport.media_storage import MANIFEST_NAME, MediaStorage
from cardport.models import (
    MediaError,
    MediaFileEntry,
    MediaKind,
    MediaManifest,
    MediaProcessingResult,
    MediaProcessingStats,
)


IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp"}
AUDIO_EXTENSIONS = {".mp3", ".wav", ".ogg", ".aac", ".m4a", ".flac"}
VIDEO_EXTENSIONS = {".mp4", ".webm", ".ogv", ".mov", ".avi", ".mkv"}


def compute_sha256(data: bytes) -> str:
    """SHA-256 hex digest of media bytes."""
    return hashlib.sha256(data).hexdigest()


def detect_media_kind(filename: str) -> MediaKind:
    """Media kind from the file extension; unknown extensions count as images."""
    ext = PurePosixPath(filename).suffix.lower()
    if ext in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return MediaKind.IMAGE


class MediaProcessor:
    """Write archive media through a MediaStorage and track it in a manifest."""

    def __init__(self, storage: MediaStorage, config: Optional[ImportConfig] = None):
        self.storage = storage
        self.config = config or ImportConfig()

    def process(self, media_map: Dict[str, bytes], collection_name: str) -> MediaProcessingResult:
        """
        Save every media file and persist the manifest.

        Per-file failures are collected in result.errors; the remaining
        files are still processed and the manifest is always saved.

        Args:
            media_map: Original filename -> bytes
            collection_name: Name of the imported collection

        Returns:
            MediaProcessingResult with saved paths, manifest, errors, stats
        """
        stats = MediaProcessingStats(total_files=len(media_map))
        errors: List[MediaError] = []
        saved_paths: Dict[str, str] = {}

        try:
            base_path = self.storage.create_collection_folder(collection_name)
        except MediaStorageError as e:
            print(f"[media:err] {ERROR} {e.message}")
            stats.failed_files = len(media_map)
            return MediaProcessingResult(
                saved_paths={},
                manifest=MediaManifest(collection_name=collection_name, base_path=""),
                errors=[MediaError(file="", error=e.message, code="PROCESS_FAILED")],
                stats=stats,
            )

        manifest = MediaManifest(collection_name=collection_name, base_path=base_path)
        print(f"[media] Processing {len(media_map)} media files into {base_path}")

        # paths taken in this run; the manifest path is never handed out
        claimed: Set[str] = {f"{base_path}/{MANIFEST_NAME}"}

        for index, (original_name, data) in enumerate(media_map.items()):
            try:
                content_hash = compute_sha256(data)
                path = self._claim_path(original_name, content_hash, base_path, claimed, index)

                if self.storage.exists(path):
                    stats.skipped_files += 1
                    if self.config.verbose:
                        print(f"[media] Already present, skipped: {path}")
                else:
                    path = self.storage.write_bytes(path, data)
                    stats.saved_files += 1
                    stats.total_size += len(data)
                    if self.config.verbose:
                        print(f"[media] Saved {original_name} -> {path}")

            except MediaStorageError as e:
                stats.failed_files += 1
                errors.append(MediaError(file=original_name, error=e.message, code="SAVE_FAILED"))
                print(f"[media:err] {ERROR} Failed to save {original_name}: {e.message}")
                continue

            saved_paths[original_name] = path
            manifest.entries.append(MediaFileEntry(
                id=f"{content_hash[:12]}-{index}",
                original_name=original_name,
                saved_path=path,
                kind=detect_media_kind(original_name),
                size_bytes=len(data),
                content_hash=content_hash,
            ))

        try:
            self.storage.save_manifest(manifest)
        except MediaStorageError as e:
            errors.append(MediaError(file="manifest", error=e.message, code="MANIFEST_FAILED"))
            print(f"[media:err] {ERROR} {e.message}")

        print(
            f"[media] {SUCCESS} {stats.saved_files} saved, {stats.skipped_files} skipped, "
            f"{stats.failed_files} failed"
        )

        return MediaProcessingResult(
            saved_paths=saved_paths,
            manifest=manifest,
            errors=errors,
            stats=stats,
        )

    def _claim_path(
        self,
        original_name: str,
        content_hash: str,
        base_path: str,
        claimed: Set[str],
        index: int,
    ) -> str:
        """
        Destination path for one file, distinct from every path already
        claimed in this run.

        Names that sanitize to the same path ("a:b.png" and "a_b.png") get
        the short content hash appended to the stem of the later one.
        """
        path = self.storage.destination_path(original_name, base_path)
        if path in claimed:
            stem, dot, ext = original_name.rpartition(".")
            if not dot:
                stem, ext = original_name, ""
            path = self.storage.destination_path(f"{stem}-{content_hash[:8]}{dot}{ext}", base_path)
            if path in claimed:
                path = self.storage.destination_path(
                    f"{stem}-{content_hash[:8]}-{index}{dot}{ext}", base_path
                )
            if self.config.verbose:
                print(f"[media] Name clash for {original_name}, saving as {path}")
        claimed.add(path)
        return path
