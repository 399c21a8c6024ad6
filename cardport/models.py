"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

models.py

Data classes shared by the APKG import pipeline.

Source records (models, decks, notes) are read once from the embedded
database and never mutated. Models and decks arrive as loosely typed JSON
dictionaries; from_json() validates them into typed records, rejecting
entries without a usable id and defaulting any other key of the wrong type.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


FIELD_SEPARATOR = "\x1f"
DEFAULT_DECK_ID = 1


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Coerce JSON ids (sometimes stored as strings) to int."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return default


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


# ============================================================================
# Archive format
# ============================================================================

class ApkgFormat(Enum):
    """Known container layouts, newest first."""

    ANKI21B = "anki21b"
    ANKI21 = "anki21"
    ANKI2 = "anki2"

    @property
    def db_filename(self) -> str:
        return f"collection.{self.value}"

    @property
    def supported(self) -> bool:
        return self is not ApkgFormat.ANKI21B

    @property
    def description(self) -> str:
        return _FORMAT_DESCRIPTIONS[self]

    @property
    def unsupported_reason(self) -> Optional[str]:
        if self.supported:
            return None
        return (
            "Anki 2.1.50+ archives store a zstd-compressed database and a "
            "protobuf media index, which cannot be read. Re-export the deck "
            "with 'Support older Anki versions' enabled."
        )


_FORMAT_DESCRIPTIONS = {
    ApkgFormat.ANKI21B: "Anki 2.1.50+ (zstd + protobuf)",
    ApkgFormat.ANKI21: "Anki 2.1.x legacy 2 (deflate + JSON)",
    ApkgFormat.ANKI2: "Anki 2.0.x legacy 1 (deflate + JSON)",
}


# ============================================================================
# Source records
# ============================================================================

class ModelKind(str, Enum):
    STANDARD = "standard"
    CLOZE = "cloze"


@dataclass(frozen=True)
class SourceTemplate:
    """One card template: question and answer HTML with {{Field}} tokens."""
    name: str
    ord: int
    question_template: str = ""
    answer_template: str = ""


@dataclass(frozen=True)
class SourceModel:
    """Field and template schema shared by many notes."""
    id: int
    name: str
    kind: ModelKind = ModelKind.STANDARD
    field_names: List[str] = field(default_factory=list)
    templates: List[SourceTemplate] = field(default_factory=list)
    style_sheet: str = ""
    sort_field_index: int = 0

    @property
    def is_cloze(self) -> bool:
        return self.kind is ModelKind.CLOZE

    @classmethod
    def from_json(cls, raw: Any) -> "SourceModel":
        """
        Validate one model dictionary from the col.models JSON blob.

        Raises:
            ValueError: If raw is not a mapping or has no integer id
        """
        if not isinstance(raw, dict):
            raise ValueError(f"model entry is {type(raw).__name__}, expected object")

        model_id = _as_int(raw.get("id"))
        if model_id is None:
            raise ValueError(f"model has no valid id: {raw.get('id')!r}")

        raw_fields = raw.get("flds") if isinstance(raw.get("flds"), list) else []
        named = []
        for position, fld in enumerate(raw_fields):
            if not isinstance(fld, dict):
                continue
            name = _as_str(fld.get("name")).strip()
            if not name:
                continue
            named.append((_as_int(fld.get("ord"), position), name))
        named.sort(key=lambda pair: pair[0])

        raw_templates = raw.get("tmpls") if isinstance(raw.get("tmpls"), list) else []
        templates = []
        for position, tmpl in enumerate(raw_templates):
            if not isinstance(tmpl, dict):
                continue
            templates.append(SourceTemplate(
                name=_as_str(tmpl.get("name"), f"Card {position + 1}"),
                ord=_as_int(tmpl.get("ord"), position),
                question_template=_as_str(tmpl.get("qfmt")),
                answer_template=_as_str(tmpl.get("afmt")),
            ))
        templates.sort(key=lambda t: t.ord)

        kind = ModelKind.CLOZE if _as_int(raw.get("type"), 0) == 1 else ModelKind.STANDARD

        return cls(
            id=model_id,
            name=_as_str(raw.get("name"), f"Model {model_id}"),
            kind=kind,
            field_names=[name for _, name in named],
            templates=templates,
            style_sheet=_as_str(raw.get("css")),
            sort_field_index=_as_int(raw.get("sortf"), 0),
        )


@dataclass(frozen=True)
class SourceDeck:
    """Deck reference data."""
    id: int
    name: str
    description: str = ""

    @classmethod
    def from_json(cls, raw: Any) -> "SourceDeck":
        if not isinstance(raw, dict):
            raise ValueError(f"deck entry is {type(raw).__name__}, expected object")
        deck_id = _as_int(raw.get("id"))
        if deck_id is None:
            raise ValueError(f"deck has no valid id: {raw.get('id')!r}")
        return cls(
            id=deck_id,
            name=_as_str(raw.get("name"), f"Deck {deck_id}"),
            description=_as_str(raw.get("desc")),
        )


@dataclass(frozen=True)
class SourceNote:
    """One row of the notes table."""
    id: int
    model_id: int
    raw_field_blob: str = ""
    raw_tags: str = ""
    modified_at: int = 0
    guid: str = ""
    sort_field: str = ""

    def field_values(self) -> List[str]:
        return self.raw_field_blob.split(FIELD_SEPARATOR)

    def tags(self) -> List[str]:
        return self.raw_tags.split()


@dataclass
class ArchiveMetadata:
    """Collection summary; timestamps in milliseconds."""
    created_ms: int
    modified_ms: int
    tool_version: str = "unknown"
    total_cards: int = 0
    total_notes: int = 0


@dataclass
class ApkgData:
    """Everything read out of one archive."""
    format: ApkgFormat
    models: List[SourceModel] = field(default_factory=list)
    decks: List[SourceDeck] = field(default_factory=list)
    notes: List[SourceNote] = field(default_factory=list)
    media: Dict[str, bytes] = field(default_factory=dict)
    metadata: Optional[ArchiveMetadata] = None
    warnings: List[str] = field(default_factory=list)

    def model_by_id(self) -> Dict[int, SourceModel]:
        return {model.id: model for model in self.models}


# ============================================================================
# Field sides
# ============================================================================

class FieldSide(str, Enum):
    FRONT = "front"
    BACK = "back"
    BOTH = "both"


# model id -> field name -> side
FieldSideMap = Dict[int, Dict[str, FieldSide]]


@dataclass
class FieldAnalysis:
    """How one field's side was decided."""
    field_name: str
    side: FieldSide
    in_question: bool
    in_answer: bool
    confidence: str  # high, medium, low
    source: str      # semantic, template, default


# ============================================================================
# Content conversion
# ============================================================================

class MediaKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaReference:
    """Media pulled out of one field during conversion."""
    original_name: str
    placeholder: str
    kind: MediaKind


@dataclass
class ConversionStats:
    original_length: int = 0
    markdown_length: int = 0
    media_count: int = 0
    preserved_tables: int = 0


@dataclass
class ConversionResult:
    markdown: str
    media_refs: List[MediaReference] = field(default_factory=list)
    preserved_html: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: ConversionStats = field(default_factory=ConversionStats)


# ============================================================================
# Media
# ============================================================================

@dataclass
class MediaFileEntry:
    """One original media filename and where its bytes live."""
    id: str
    original_name: str
    saved_path: str
    kind: MediaKind
    size_bytes: int
    content_hash: str
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaFileEntry":
        return cls(
            id=str(data.get("id", "")),
            original_name=str(data.get("original_name", "")),
            saved_path=str(data.get("saved_path", "")),
            kind=MediaKind(data.get("kind", MediaKind.IMAGE.value)),
            size_bytes=int(data.get("size_bytes", 0)),
            content_hash=str(data.get("content_hash", "")),
            created_at=str(data.get("created_at", "")),
        )


@dataclass
class MediaManifest:
    """All media persisted by one import, keyed by original filename."""
    collection_name: str
    base_path: str
    entries: List[MediaFileEntry] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    version: int = 1

    def lookup(self, original_name: str) -> Optional[MediaFileEntry]:
        for entry in self.entries:
            if entry.original_name == original_name:
                return entry
        return None

    def path_map(self) -> Dict[str, str]:
        return {entry.original_name: entry.saved_path for entry in self.entries}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "collection_name": self.collection_name,
            "base_path": self.base_path,
            "created_at": self.created_at,
            "entries": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaManifest":
        return cls(
            collection_name=str(data.get("collection_name", "")),
            base_path=str(data.get("base_path", "")),
            entries=[MediaFileEntry.from_dict(e) for e in data.get("entries", [])],
            created_at=str(data.get("created_at", "")),
            version=int(data.get("version", 1)),
        )


@dataclass
class MediaError:
    file: str
    error: str
    severity: str = "error"  # warning, error
    code: str = ""


@dataclass
class MediaProcessingStats:
    total_files: int = 0
    saved_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    total_size: int = 0


@dataclass
class MediaProcessingResult:
    saved_paths: Dict[str, str]
    manifest: MediaManifest
    errors: List[MediaError] = field(default_factory=list)
    stats: MediaProcessingStats = field(default_factory=MediaProcessingStats)

    @property
    def success(self) -> bool:
        return not self.errors


# ============================================================================
# Output cards
# ============================================================================

@dataclass
class Card:
    """Flashcard record handed to the card store."""
    id: str
    deck_id: str
    fields: Dict[str, str]
    raw_content: str
    tags: List[str] = field(default_factory=list)
    card_type: str = "basic"
    source_metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BuildResult:
    card: Card
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# Import run
# ============================================================================

@dataclass
class ImportIssue:
    """An error or warning tied to a pipeline stage and, when known, a note."""
    stage: str
    message: str
    note_id: Optional[int] = None
    code: str = ""


@dataclass
class ImportProgress:
    stage: str
    progress: float
    message: str
    completed: Optional[int] = None
    total: Optional[int] = None


@dataclass
class ImportStats:
    total_notes: int = 0
    imported_cards: int = 0
    failed_cards: int = 0
    media_files: int = 0
    media_total_size: int = 0


@dataclass
class ImportResult:
    cards: List[Card] = field(default_factory=list)
    manifest: Optional[MediaManifest] = None
    stats: ImportStats = field(default_factory=ImportStats)
    errors: List[ImportIssue] = field(default_factory=list)
    warnings: List[ImportIssue] = field(default_factory=list)
    duration_ms: int = 0
    metadata: Optional[ArchiveMetadata] = None

    @property
    def success(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return (
            f"{self.stats.imported_cards} of {self.stats.total_notes} notes imported, "
            f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"
        )
