"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

Shared fixtures: build real .apkg archives (SQLite collection + ZIP) in
a temporary directory.
"""

import json
import sqlite3
import zipfile
from pathlib import Path

import pytest

from cardport.media_storage import FileSystemMediaStorage


BASIC_MODEL_ID = 1342697561419
CLOZE_MODEL_ID = 1342697561420
DECK_ID = 1500000000000

BASIC_MODEL = {
    "id": BASIC_MODEL_ID,
    "name": "Basic",
    "type": 0,
    "sortf": 0,
    "css": ".card { font-family: arial; }",
    "flds": [
        {"name": "Front", "ord": 0},
        {"name": "Back", "ord": 1},
    ],
    "tmpls": [
        {
            "name": "Card 1",
            "ord": 0,
            "qfmt": "{{Front}}",
            "afmt": "{{FrontSide}}<hr id=answer>{{Back}}",
        }
    ],
}

CLOZE_MODEL = {
    "id": CLOZE_MODEL_ID,
    "name": "Cloze",
    "type": 1,
    "flds": [
        {"name": "Text", "ord": 0},
        {"name": "Back Extra", "ord": 1},
    ],
    "tmpls": [
        {
            "name": "Cloze",
            "ord": 0,
            "qfmt": "{{cloze:Text}}",
            "afmt": "{{cloze:Text}}<br>{{Back Extra}}",
        }
    ],
}

DEFAULT_DECKS = {
    "1": {"id": 1, "name": "Default", "desc": ""},
    str(DECK_ID): {"id": DECK_ID, "name": "Spanish Verbs", "desc": "Common verbs"},
}

SCHEMA = """
CREATE TABLE col (
    id integer primary key, crt integer not null, mod integer not null,
    scm integer not null, ver integer not null, dty integer not null,
    usn integer not null, ls integer not null, conf text not null,
    models text not null, decks text not null, dconf text not null,
    tags text not null
);
CREATE TABLE notes (
    id integer primary key, guid text not null, mid integer not null,
    mod integer not null, usn integer not null, tags text not null,
    flds text not null, sfld integer not null, csum integer not null,
    flags integer not null, data text not null
);
CREATE TABLE cards (
    id integer primary key, nid integer not null, did integer not null,
    ord integer not null, mod integer not null
);
"""


def note_row(note_id, model_id, fields, tags="", guid=None):
    """(id, model id, field list, tags) -> notes table row values."""
    return (
        note_id,
        guid or f"guid{note_id}",
        model_id,
        1700000000,
        -1,
        f" {tags} " if tags else "",
        "\x1f".join(fields),
        fields[0] if fields else "",
        0,
        0,
        "",
    )


def build_collection(
    path,
    models=None,
    decks=None,
    notes=(),
    crt=1600000000,
    mod=1700000000123,
    ver=11,
    with_col_row=True,
    with_notes_table=True,
):
    """Write an Anki collection database to path."""
    models = models if models is not None else {str(BASIC_MODEL_ID): BASIC_MODEL}
    decks = decks if decks is not None else DEFAULT_DECKS

    conn = sqlite3.connect(str(path))
    try:
        schema = SCHEMA
        if not with_notes_table:
            schema = schema.replace("CREATE TABLE notes", "CREATE TABLE unused_notes")
        conn.executescript(schema)
        if with_col_row:
            conn.execute(
                "INSERT INTO col VALUES (1, ?, ?, 0, ?, 0, 0, 0, '{}', ?, ?, '{}', '{}')",
                (crt, mod, ver, json.dumps(models), json.dumps(decks)),
            )
        if with_notes_table:
            for row in notes:
                conn.execute("INSERT INTO notes VALUES (?,?,?,?,?,?,?,?,?,?,?)", row)
                conn.execute(
                    "INSERT INTO cards VALUES (?, ?, ?, 0, 0)", (row[0] + 1, row[0], DECK_ID)
                )
        conn.commit()
    finally:
        conn.close()


def build_apkg(
    directory,
    name="deck.apkg",
    db_name="collection.anki21",
    media=None,
    media_index=None,
    extra_entries=None,
    **collection_kwargs,
):
    """
    Build a .apkg file and return its path.

    media: original filename -> bytes; stored as numbered entries with a
    matching `media` index. media_index overrides the index text.
    """
    directory = Path(directory)
    db_path = directory / f"{name}.sqlite"
    build_collection(db_path, **collection_kwargs)

    apkg_path = directory / name
    with zipfile.ZipFile(apkg_path, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.write(db_path, db_name)

        index = {}
        for number, (filename, data) in enumerate((media or {}).items()):
            index[str(number)] = filename
            zf.writestr(str(number), data)

        if media_index is not None:
            zf.writestr("media", media_index)
        elif media is not None:
            zf.writestr("media", json.dumps(index))

        for entry_name, data in (extra_entries or {}).items():
            zf.writestr(entry_name, data)

    db_path.unlink()
    return apkg_path


@pytest.fixture
def make_apkg(tmp_path):
    """Factory fixture: make_apkg(**kwargs) -> Path to a new archive."""
    counter = [0]

    def make(**kwargs):
        counter[0] += 1
        kwargs.setdefault("name", f"deck{counter[0]}.apkg")
        return build_apkg(tmp_path, **kwargs)

    return make


@pytest.fixture
def storage(tmp_path):
    return FileSystemMediaStorage(tmp_path / "vault")
