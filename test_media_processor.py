"""
Tests for media_processor and the filesystem storage adapter.
"""

import hashlib
import json

import pytest

from cardport.errors import MediaStorageError
from cardport.media_processor import MediaProcessor, compute_sha256, detect_media_kind
from cardport.media_storage import FileSystemMediaStorage, sanitize_filename
from cardport.models import MediaKind


class FailingStorage(FileSystemMediaStorage):
    """Filesystem storage that refuses to write selected names."""

    def __init__(self, root, fail_names=(), fail_folder=False):
        super().__init__(root)
        self.fail_names = set(fail_names)
        self.fail_folder = fail_folder

    def create_collection_folder(self, collection_name):
        if self.fail_folder:
            raise MediaStorageError(message="read-only volume")
        return super().create_collection_folder(collection_name)

    def write_bytes(self, path, data):
        if path.rsplit("/", 1)[-1] in self.fail_names:
            raise MediaStorageError(message=f"disk full writing {path}")
        return super().write_bytes(path, data)


def test_saves_files_and_manifest(storage, tmp_path):
    media = {"dog.jpg": b"jpegbytes", "bark.mp3": b"mp3bytes"}

    result = MediaProcessor(storage).process(media, "Spanish Verbs")

    assert result.success
    assert result.stats.saved_files == 2
    assert result.stats.total_size == len(b"jpegbytes") + len(b"mp3bytes")
    assert result.saved_paths == {
        "dog.jpg": "media/Spanish Verbs/dog.jpg",
        "bark.mp3": "media/Spanish Verbs/bark.mp3",
    }
    assert (tmp_path / "vault" / "media" / "Spanish Verbs" / "dog.jpg").read_bytes() == b"jpegbytes"

    entry = result.manifest.lookup("bark.mp3")
    assert entry.kind is MediaKind.AUDIO
    assert entry.size_bytes == len(b"mp3bytes")
    assert entry.content_hash == hashlib.sha256(b"mp3bytes").hexdigest()

    saved = json.loads((tmp_path / "vault" / "media" / "Spanish Verbs" / "manifest.json").read_text())
    assert saved["collection_name"] == "Spanish Verbs"
    assert {e["original_name"] for e in saved["entries"]} == {"dog.jpg", "bark.mp3"}


def test_identical_bytes_under_two_names_stored_separately(storage, tmp_path):
    media = {"a.png": b"same", "b.png": b"same"}

    result = MediaProcessor(storage).process(media, "Deck")

    a = result.manifest.lookup("a.png")
    b = result.manifest.lookup("b.png")
    assert a.content_hash == b.content_hash
    assert a.saved_path != b.saved_path
    assert (tmp_path / "vault" / a.saved_path).is_file()
    assert (tmp_path / "vault" / b.saved_path).is_file()


def test_names_sanitizing_alike_get_separate_files(storage, tmp_path):
    media = {"a:b.png": b"FIRST", "a_b.png": b"SECOND"}

    result = MediaProcessor(storage).process(media, "Deck")

    first = result.manifest.lookup("a:b.png")
    second = result.manifest.lookup("a_b.png")
    assert first.saved_path == "media/Deck/a_b.png"
    assert second.saved_path == f"media/Deck/a_b-{compute_sha256(b'SECOND')[:8]}.png"
    assert (tmp_path / "vault" / first.saved_path).read_bytes() == b"FIRST"
    assert (tmp_path / "vault" / second.saved_path).read_bytes() == b"SECOND"
    assert result.stats.saved_files == 2


def test_media_named_like_manifest_does_not_replace_it(storage, tmp_path):
    result = MediaProcessor(storage).process({"manifest.json": b"{}"}, "Deck")

    entry = result.manifest.lookup("manifest.json")
    assert entry.saved_path == f"media/Deck/manifest-{compute_sha256(b'{}')[:8]}.json"
    assert (tmp_path / "vault" / entry.saved_path).read_bytes() == b"{}"
    loaded = storage.load_manifest(result.manifest.base_path)
    assert loaded.path_map() == {"manifest.json": entry.saved_path}


def test_existing_destination_skipped_but_recorded(storage, tmp_path):
    MediaProcessor(storage).process({"dog.jpg": b"first"}, "Deck")

    result = MediaProcessor(storage).process({"dog.jpg": b"second"}, "Deck")

    assert result.stats.skipped_files == 1
    assert result.stats.saved_files == 0
    assert result.manifest.lookup("dog.jpg").saved_path == "media/Deck/dog.jpg"
    # existing bytes are not rewritten
    assert (tmp_path / "vault" / "media" / "Deck" / "dog.jpg").read_bytes() == b"first"


def test_failed_write_recorded_and_others_continue(tmp_path):
    storage = FailingStorage(tmp_path / "vault", fail_names={"bad.png"})
    media = {"good.png": b"1", "bad.png": b"2", "also.png": b"3"}

    result = MediaProcessor(storage).process(media, "Deck")

    assert not result.success
    assert [(e.file, e.code) for e in result.errors] == [("bad.png", "SAVE_FAILED")]
    assert set(result.saved_paths) == {"good.png", "also.png"}
    assert result.stats.failed_files == 1
    assert result.manifest.lookup("bad.png") is None
    assert storage.load_manifest(result.manifest.base_path) is not None


def test_folder_failure_gives_empty_manifest(tmp_path):
    storage = FailingStorage(tmp_path / "vault", fail_folder=True)

    result = MediaProcessor(storage).process({"dog.jpg": b"x"}, "Deck")

    assert [e.code for e in result.errors] == ["PROCESS_FAILED"]
    assert result.manifest.entries == []
    assert result.stats.failed_files == 1


def test_empty_media_still_writes_manifest(storage):
    result = MediaProcessor(storage).process({}, "Deck")

    assert result.success
    loaded = storage.load_manifest(result.manifest.base_path)
    assert loaded.collection_name == "Deck"
    assert loaded.entries == []


def test_manifest_round_trips_through_storage(storage):
    result = MediaProcessor(storage).process({"walk.webm": b"v"}, "Deck")

    loaded = storage.load_manifest(result.manifest.base_path)

    assert loaded.path_map() == {"walk.webm": "media/Deck/walk.webm"}
    assert loaded.lookup("walk.webm").kind is MediaKind.VIDEO


def test_write_locks_do_not_accumulate(storage):
    for n in range(5):
        storage.write_bytes(f"media/Deck/{n}.png", b"x")

    assert len(storage._locks) == 0


@pytest.mark.parametrize("name,kind", [
    ("photo.JPG", MediaKind.IMAGE),
    ("diagram.svg", MediaKind.IMAGE),
    ("clip.m4a", MediaKind.AUDIO),
    ("voice.flac", MediaKind.AUDIO),
    ("movie.mkv", MediaKind.VIDEO),
    ("lecture.ogv", MediaKind.VIDEO),
    ("unknown.xyz", MediaKind.IMAGE),
    ("noextension", MediaKind.IMAGE),
])
def test_detect_media_kind(name, kind):
    assert detect_media_kind(name) is kind


def test_compute_sha256():
    assert compute_sha256(b"") == hashlib.sha256(b"").hexdigest()


@pytest.mark.parametrize("name,expected", [
    ("dog.jpg", "dog.jpg"),
    ("Spanish: Verbs", "Spanish_ Verbs"),
    ("a|b?.png", "a_b_.png"),
    ("[APKG] Deck", "_APKG_ Deck"),
    ("", "untitled"),
])
def test_sanitize_filename(name, expected):
    assert sanitize_filename(name) == expected


def test_sanitize_filename_keeps_extension_when_truncating():
    name = "x" * 150 + ".png"

    result = sanitize_filename(name)

    assert len(result) == 100
    assert result.endswith(".png")
