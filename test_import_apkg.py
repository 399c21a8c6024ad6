"""
End-to-end tests for import_apkg: archive in, cards and media out.
"""

import runpy
import sys

import frontmatter
import pytest

from conftest import BASIC_MODEL, BASIC_MODEL_ID, CLOZE_MODEL, CLOZE_MODEL_ID, DECK_ID, note_row
from cardport import import_apkg
from cardport.config import ImportConfig
from cardport.errors import CorruptArchive, ImportCancelled, UnsupportedFormat
from cardport.import_apkg import ApkgImporter, CancellationToken, write_cards


MODELS = {str(BASIC_MODEL_ID): BASIC_MODEL, str(CLOZE_MODEL_ID): CLOZE_MODEL}


def sample_notes():
    return [
        note_row(1, BASIC_MODEL_ID, ["2+2?", "4"], "math easy"),
        note_row(2, BASIC_MODEL_ID, ['Dog? <img src="dog.jpg">', "[sound:bark.mp3]Woof"]),
        note_row(3, CLOZE_MODEL_ID, ["The capital of France is {{c1::Paris}}.", ""]),
        note_row(4, BASIC_MODEL_ID, ["", ""]),
        note_row(5, 999, ["orphan", "note"]),
    ]


@pytest.fixture
def sample_apkg(make_apkg):
    return make_apkg(
        models=MODELS,
        notes=sample_notes(),
        media={"dog.jpg": b"jpeg", "bark.mp3": b"mp3"},
    )


def test_full_import(sample_apkg, storage, tmp_path):
    result = ApkgImporter(storage).run(sample_apkg)

    assert result.stats.total_notes == 5
    assert result.stats.imported_cards == 3
    assert result.stats.failed_cards == 2
    assert result.stats.media_files == 2
    assert result.success

    cards = {card.source_metadata["note_id"]: card for card in result.cards}
    assert cards[1].fields == {"front": "2+2?", "back": "4"}
    assert cards[1].tags == ["math", "easy"]
    assert cards[1].deck_id == str(DECK_ID)
    assert cards[2].fields == {
        "front": "Dog? ![[media/Spanish Verbs/dog.jpg]]",
        "back": "![[media/Spanish Verbs/bark.mp3]]Woof",
    }
    assert cards[3].card_type == "cloze"
    assert "==Paris==" in cards[3].fields["front"]

    assert (tmp_path / "vault" / "media" / "Spanish Verbs" / "dog.jpg").read_bytes() == b"jpeg"
    assert result.manifest.collection_name == "Spanish Verbs"


def test_per_note_failures_keep_note_ids(sample_apkg, storage):
    result = ApkgImporter(storage).run(sample_apkg)

    by_code = {issue.code: issue for issue in result.warnings if issue.code}
    assert by_code["BUILD_FAILED"].note_id == 4
    assert by_code["MODEL_NOT_FOUND"].note_id == 5


def test_cards_sorted_by_note_id(sample_apkg, storage):
    result = ApkgImporter(storage, ImportConfig(workers=3)).run(sample_apkg)

    assert [c.source_metadata["note_id"] for c in result.cards] == [1, 2, 3]


def test_unused_field_warning_surfaces(make_apkg, storage):
    model = dict(BASIC_MODEL, flds=BASIC_MODEL["flds"] + [{"name": "Source", "ord": 2}])
    path = make_apkg(
        models={str(BASIC_MODEL_ID): model},
        notes=[note_row(1, BASIC_MODEL_ID, ["q", "a", "book"])],
    )

    result = ApkgImporter(storage).run(path)

    analyzing = [w for w in result.warnings if w.stage == "analyzing"]
    assert len(analyzing) == 1
    assert "'Source'" in analyzing[0].message
    assert result.cards[0].fields == {"front": "q\n\nbook", "back": "a"}


def test_missing_media_entry_is_a_warning(make_apkg, storage):
    path = make_apkg(
        notes=[note_row(1, BASIC_MODEL_ID, ['<img src="gone.png">', "a"])],
        media_index='{"0": "gone.png"}',
    )

    result = ApkgImporter(storage).run(path)

    stages = {w.stage for w in result.warnings}
    assert "parsing" in stages
    assert "building" in stages
    assert result.cards[0].fields == {"back": "a"}


def test_collection_name_override(sample_apkg, storage):
    result = ApkgImporter(storage).run(sample_apkg, collection_name="Mine", deck_id="d9")

    assert result.manifest.base_path == "media/Mine"
    assert all(card.deck_id == "d9" for card in result.cards)


def test_collection_name_falls_back_to_file_stem(make_apkg, storage):
    path = make_apkg(name="french.apkg", decks={"1": {"id": 1, "name": "Default"}})

    result = ApkgImporter(storage).run(path)

    assert result.manifest.collection_name == "french"


def test_collection_name_default_for_bytes(make_apkg, storage):
    path = make_apkg(decks={})

    result = ApkgImporter(storage).run(path.read_bytes())

    assert result.manifest.collection_name == "Imported Deck"


def test_progress_stages_reported(sample_apkg, storage):
    seen = []

    ApkgImporter(storage).run(sample_apkg, progress=seen.append)

    stages = [p.stage for p in seen]
    assert stages[0] == "parsing"
    assert stages[-1] == "done"
    for stage in ("analyzing", "media", "building"):
        assert stage in stages
    assert seen[-1].progress == 1.0


def test_cancelled_token_stops_import(sample_apkg, storage):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ImportCancelled):
        ApkgImporter(storage).run(sample_apkg, cancel=token)


def test_cancel_during_build(sample_apkg, storage):
    token = CancellationToken()

    def cancel_when_building(progress):
        if progress.stage == "building":
            token.cancel()

    with pytest.raises(ImportCancelled):
        ApkgImporter(storage, ImportConfig(workers=1)).run(
            sample_apkg, cancel=token, progress=cancel_when_building
        )


def test_fatal_errors_propagate(make_apkg, storage):
    with pytest.raises(UnsupportedFormat):
        ApkgImporter(storage).run(make_apkg(db_name="collection.anki21b"))
    with pytest.raises(CorruptArchive):
        ApkgImporter(storage).run(b"garbage")


def test_write_cards_uses_frontmatter(sample_apkg, storage, tmp_path):
    result = ApkgImporter(storage).run(sample_apkg)

    paths = write_cards(result.cards, tmp_path / "cards")

    assert len(paths) == 3
    post = frontmatter.load(str(tmp_path / "cards" / "apkg-1.md"))
    assert post["tags"] == ["math", "easy"]
    assert post["note_id"] == 1
    assert post.content == "**Front**: 2+2?\n\n---div---\n\n**Back**: 4"


# ============================================================================
# CLI
# ============================================================================

def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["cardport-import", *map(str, args)])
    return import_apkg.main()


def test_cli_import(sample_apkg, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    code = run_cli(monkeypatch, sample_apkg, "--media-dir", tmp_path / "vault", "--output", tmp_path / "out")

    assert code == 0
    assert (tmp_path / "out" / "apkg-1.md").is_file()
    assert (tmp_path / "vault" / "media" / "Spanish Verbs" / "manifest.json").is_file()


def test_cli_dry_run_writes_nothing(sample_apkg, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)

    code = run_cli(monkeypatch, sample_apkg, "--dry-run", "--media-dir", tmp_path / "vault")

    assert code == 0
    assert not (tmp_path / "vault").exists()
    assert "Notes: 5" in capsys.readouterr().out


def test_cli_missing_file(tmp_path, monkeypatch):
    assert run_cli(monkeypatch, tmp_path / "nope.apkg") == 1


def test_cli_unsupported_format(make_apkg, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)

    code = run_cli(monkeypatch, make_apkg(db_name="collection.anki21b"))

    assert code == 1
    assert "unsupported_format" in capsys.readouterr().out


def test_module_entry_point_exits_with_status(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["cardport-import", str(tmp_path / "nope.apkg")])

    with pytest.raises(SystemExit) as exc_info:
        runpy.run_module("cardport.import_apkg", run_name="__main__")

    assert exc_info.value.code == 1
