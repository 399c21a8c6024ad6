"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

media_storage.py

Storage adapters for imported media.

The import pipeline never touches the filesystem directly; it asks a
MediaStorage for a collection folder, checks whether a destination path
exists, writes bytes, and persists the manifest. Path naming belongs to
the adapter.

FileSystemMediaStorage lays files out as:

    <root>/<media_root>/<collection>/
        dog.jpg
        bark.mp3
        manifest.json

Saved paths are POSIX paths relative to <root>, ready to embed in notes.
"""

from __future__ import annotations

import json
import re
import threading
import weakref
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from cardport.errors import MediaStorageError
from cardport.models import MediaManifest


MANIFEST_NAME = "manifest.json"


def sanitize_filename(name: str, max_length: int = 100) -> str:
    """
    Make a media or folder name safe for the file system.

    Unlike slugs for content folders, the extension and case are kept so
    distinct archive names stay distinct on disk.

    Examples:
        "Spanish: Verbs" -> "Spanish_ Verbs"
        "a|b?.png"       -> "a_b_.png"
    """
    name = re.sub(r'[<>:"/\\|?*\x00-\x1f\[\]#^]', "_", name)
    name = name.strip().strip(".")
    if len(name) > max_length:
        stem, dot, ext = name.rpartition(".")
        if dot and len(ext) < 10:
            name = stem[: max_length - len(ext) - 1] + "." + ext
        else:
            name = name[:max_length]
    return name or "untitled"


class MediaStorage(ABC):
    """Contract between the media processor and wherever bytes end up."""

    @abstractmethod
    def create_collection_folder(self, collection_name: str) -> str:
        """Create (idempotently) the folder for one collection; return its path."""

    @abstractmethod
    def destination_path(self, original_name: str, base_path: str) -> str:
        """Deterministic saved path for an original media filename."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def write_bytes(self, path: str, data: bytes) -> str:
        """
        Write bytes at path and return the saved path.

        Raises:
            MediaStorageError: If the write fails
        """

    @abstractmethod
    def save_manifest(self, manifest: MediaManifest) -> None:
        ...

    @abstractmethod
    def load_manifest(self, base_path: str) -> Optional[MediaManifest]:
        ...


class FileSystemMediaStorage(MediaStorage):
    """Store media under a local directory."""

    def __init__(self, root: Path, media_root: str = "media"):
        self.root = Path(root)
        self.media_root = media_root
        # entries go away once no writer holds the lock
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _resolve(self, path: str) -> Path:
        return self.root / Path(path)

    def _lock_for(self, path: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    def create_collection_folder(self, collection_name: str) -> str:
        base_path = f"{self.media_root}/{sanitize_filename(collection_name)}"
        try:
            self._resolve(base_path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise MediaStorageError(
                message=f"Cannot create media folder: {base_path}",
                context={"root": str(self.root)},
                cause=e,
            )
        return base_path

    def destination_path(self, original_name: str, base_path: str) -> str:
        return f"{base_path}/{sanitize_filename(original_name)}"

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def write_bytes(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        with self._lock_for(path):
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
            except OSError as e:
                raise MediaStorageError(
                    message=f"Failed to write media file: {path}",
                    cause=e,
                )
        return path

    def save_manifest(self, manifest: MediaManifest) -> None:
        path = f"{manifest.base_path}/{MANIFEST_NAME}"
        target = self._resolve(path)
        with self._lock_for(path):
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(
                    json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False),
                    encoding="utf-8",
                )
            except OSError as e:
                raise MediaStorageError(
                    message=f"Failed to write media manifest: {path}",
                    cause=e,
                )

    def load_manifest(self, base_path: str) -> Optional[MediaManifest]:
        target = self._resolve(f"{base_path}/{MANIFEST_NAME}")
        if not target.is_file():
            return None
        try:
            data = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise MediaStorageError(
                message=f"Media manifest is unreadable: {target}",
                cause=e,
            )
        return MediaManifest.from_dict(data)
