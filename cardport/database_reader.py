"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

database_reader.py

Read models, decks, notes and collection metadata out of the SQLite
database embedded in an APKG archive.

Schema contract (read-only):
- col: one configuration row. `models` and `decks` are JSON objects keyed
  by id; `crt`, `mod`, `ver` hold creation time (seconds), modification
  time and schema version.
- notes: id, mid, flds (fields joined by 0x1f), tags (space separated),
  mod, guid, sfld.

Usage:
    from cardport.database_reader import DatabaseReader

    contents = DatabaseReader().read(db_bytes)
"""

from __future__ import annotations

import json
import shutil
import sqlite3
import tempfile
import time
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from cardport.errors import CorruptDatabase
from cardport.icons import WARNING
from cardport.models import (
    DEFAULT_DECK_ID,
    ArchiveMetadata,
    SourceDeck,
    SourceModel,
    SourceNote,
)


# Anki stores crt in seconds; anything above this is already milliseconds
MILLISECOND_THRESHOLD = 10 ** 11


@dataclass
class DatabaseContents:
    """Row sets extracted from one embedded database."""
    models: List[SourceModel] = field(default_factory=list)
    decks: List[SourceDeck] = field(default_factory=list)
    notes: List[SourceNote] = field(default_factory=list)
    metadata: Optional[ArchiveMetadata] = None
    warnings: List[str] = field(default_factory=list)


def to_milliseconds(value: Any) -> int:
    """Convert a stored timestamp to milliseconds."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return int(time.time() * 1000)
    if number > MILLISECOND_THRESHOLD:
        return number
    return number * 1000


class DatabaseReader:
    """Extract typed records from the embedded collection database."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def read(self, db_bytes: bytes) -> DatabaseContents:
        """
        Read every row set from the database bytes.

        Args:
            db_bytes: Raw SQLite file contents

        Returns:
            DatabaseContents with models, decks, notes, metadata and warnings

        Raises:
            CorruptDatabase: If the bytes are not a SQLite database or the
                col configuration row is missing
        """
        if not db_bytes:
            raise CorruptDatabase(
                message="Embedded database is empty",
                suggestion="Re-export the deck from Anki",
            )

        temp_dir = Path(tempfile.mkdtemp(prefix="cardport_db_"))
        db_path = temp_dir / "collection.sqlite"

        try:
            db_path.write_bytes(db_bytes)
            try:
                conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
            except sqlite3.Error as e:
                raise CorruptDatabase(
                    message="Embedded database cannot be opened",
                    cause=e,
                )

            with closing(conn):
                return self._read_all(conn)

        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def _read_all(self, conn: sqlite3.Connection) -> DatabaseContents:
        contents = DatabaseContents()

        models_json, decks_json = self._read_config_row(conn)
        contents.models = self._parse_models(models_json, contents.warnings)
        contents.decks = self._parse_decks(decks_json, contents.warnings)
        contents.notes = self._read_notes(conn, contents.warnings)
        contents.metadata = self._read_metadata(conn, len(contents.notes), contents.warnings)

        print(
            f"[apkg] Read {len(contents.models)} models, {len(contents.decks)} decks, "
            f"{len(contents.notes)} notes"
        )
        return contents

    # ------------------------------------------------------------------
    # col row
    # ------------------------------------------------------------------

    def _read_config_row(self, conn: sqlite3.Connection):
        try:
            row = conn.execute("SELECT models, decks FROM col LIMIT 1").fetchone()
        except sqlite3.DatabaseError as e:
            # Covers both a missing col table and a file that is not SQLite
            raise CorruptDatabase(
                message="Embedded database has no readable col table",
                suggestion="The archive may be damaged; re-export the deck",
                cause=e,
            )

        if row is None:
            raise CorruptDatabase(
                message="Embedded database is missing its configuration row",
                suggestion="The archive may be damaged; re-export the deck",
                context={"table": "col"},
            )

        return row[0], row[1]

    def _load_json_object(self, raw: Any, what: str) -> Dict[str, Any]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            data = json.loads(raw or "{}")
        except (TypeError, ValueError) as e:
            raise CorruptDatabase(
                message=f"Configuration row holds invalid {what} JSON",
                cause=e,
            )
        if not isinstance(data, dict):
            raise CorruptDatabase(
                message=f"Configuration row {what} must be a JSON object",
                context={"type": type(data).__name__},
            )
        return data

    def _parse_models(self, raw: Any, warnings: List[str]) -> List[SourceModel]:
        models = []
        for key, value in self._load_json_object(raw, "models").items():
            try:
                models.append(SourceModel.from_json(value))
            except ValueError as e:
                message = f"Skipping invalid model {key}: {e}"
                warnings.append(message)
                print(f"[apkg:warn] {WARNING} {message}")
        if self.verbose:
            print(f"[apkg] Parsed {len(models)} models")
        return models

    def _parse_decks(self, raw: Any, warnings: List[str]) -> List[SourceDeck]:
        decks = []
        for key, value in self._load_json_object(raw, "decks").items():
            try:
                deck = SourceDeck.from_json(value)
            except ValueError as e:
                message = f"Skipping invalid deck {key}: {e}"
                warnings.append(message)
                print(f"[apkg:warn] {WARNING} {message}")
                continue
            if deck.id == DEFAULT_DECK_ID:
                continue
            decks.append(deck)
        return decks

    # ------------------------------------------------------------------
    # notes
    # ------------------------------------------------------------------

    def _read_notes(self, conn: sqlite3.Connection, warnings: List[str]) -> List[SourceNote]:
        try:
            rows = conn.execute(
                "SELECT id, mid, flds, tags, mod, guid, sfld FROM notes ORDER BY id"
            ).fetchall()
        except sqlite3.DatabaseError as e:
            message = f"No notes table found: {e}"
            warnings.append(message)
            print(f"[apkg:warn] {WARNING} {message}")
            return []

        notes = []
        for row in rows:
            note_id, model_id, flds, tags, mod, guid, sfld = row
            notes.append(SourceNote(
                id=int(note_id),
                model_id=int(model_id),
                raw_field_blob=flds or "",
                raw_tags=tags or "",
                modified_at=int(mod or 0),
                guid=guid or "",
                # sfld is typed integer in the schema but often holds text
                sort_field="" if sfld is None else str(sfld),
            ))
        return notes

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------

    def _read_metadata(
        self,
        conn: sqlite3.Connection,
        total_notes: int,
        warnings: List[str],
    ) -> ArchiveMetadata:
        try:
            row = conn.execute("SELECT crt, mod, ver FROM col LIMIT 1").fetchone()
        except sqlite3.DatabaseError as e:
            row = None
            warnings.append(f"Could not read collection metadata: {e}")
            print(f"[apkg:warn] {WARNING} Could not read collection metadata: {e}")

        if row is None:
            now = int(time.time() * 1000)
            return ArchiveMetadata(
                created_ms=now,
                modified_ms=now,
                total_cards=0,
                total_notes=total_notes,
            )

        crt, mod, ver = row
        return ArchiveMetadata(
            created_ms=to_milliseconds(crt),
            modified_ms=to_milliseconds(mod),
            tool_version=str(ver) if ver not in (None, "") else "unknown",
            total_cards=self._count_cards(conn),
            total_notes=total_notes,
        )

    def _count_cards(self, conn: sqlite3.Connection) -> int:
        try:
            return int(conn.execute("SELECT COUNT(*) FROM cards").fetchone()[0])
        except sqlite3.DatabaseError:
            return 0
