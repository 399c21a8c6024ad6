"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

card_builder.py

Assemble one Card from one Anki note.

Each non-empty field is transcoded to markdown, labelled with its name
and placed in the front, back or both bucket according to the field side
map. Assembled content looks like:

    **Front**: 2+2?

    ---div---

    **Back**: 4

The divider only appears when both sides have content. The structured
front/back fields are then re-read from the assembled text, so an
unexpected divider position still yields a sensible split.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from cardport.config import ImportConfig
from cardport.errors import EmptyNoteError
from cardport.html_to_markdown import ContentConverter
from cardport.models import (
    BuildResult,
    Card,
    FieldSide,
    FieldSideMap,
    MediaManifest,
    SourceModel,
    SourceNote,
)


class CardBuilder:
    """Turn notes into Card records. Safe to share across worker threads."""

    def __init__(self, config: Optional[ImportConfig] = None, converter: Optional[ContentConverter] = None):
        self.config = config or ImportConfig()
        self.converter = converter or ContentConverter(self.config)

    def build(
        self,
        note: SourceNote,
        model: SourceModel,
        field_sides: FieldSideMap,
        manifest: Optional[MediaManifest],
        deck_id: str = "",
    ) -> BuildResult:
        """
        Build one card.

        Args:
            note: Source note
            model: The note's model
            field_sides: Side map from FieldSideResolver (all models)
            manifest: Media manifest used to resolve embeds
            deck_id: Target deck identifier in the card store

        Returns:
            BuildResult with the card and any per-note warnings

        Raises:
            EmptyNoteError: If no field of the note has usable content
        """
        warnings: List[str] = []
        sides = field_sides.get(model.id, {})
        values = self.split_fields(note, model)

        front: List[str] = []
        back: List[str] = []
        both: List[str] = []

        for name, value in values.items():
            if not value.strip():
                continue

            result = self.converter.convert(value)
            markdown = self.converter.replace_media_placeholders(
                result.markdown, result.media_refs, manifest, warnings
            )
            if not markdown:
                continue

            block = f"**{name}**: {markdown}"
            side = sides.get(name, FieldSide.BOTH)
            if side is FieldSide.FRONT:
                front.append(block)
            elif side is FieldSide.BACK:
                back.append(block)
            else:
                both.append(block)

        if not (front or back or both):
            raise EmptyNoteError(
                message=f"Note {note.id} has no content on either side",
                context={"model": model.name},
                note_id=note.id,
            )

        content, produced = self.assemble(front, back, both)

        card = Card(
            id=f"apkg-{note.id}",
            deck_id=deck_id,
            fields=self.extract_fields(content, model.field_names, produced),
            raw_content=content,
            tags=note.tags(),
            card_type="cloze" if model.is_cloze else "basic",
            source_metadata={
                "note_id": note.id,
                "model_id": model.id,
                "model_name": model.name,
                "guid": note.guid,
                "modified_at": note.modified_at,
                "original_fields": values,
                "import_source": "apkg",
            },
        )

        if self.config.verbose:
            print(f"[cards] Built card {card.id} ({', '.join(card.fields) or 'empty'})")

        return BuildResult(card=card, warnings=warnings)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def split_fields(note: SourceNote, model: SourceModel) -> Dict[str, str]:
        """Pair the note's raw values with the model's ordered field names."""
        values = note.field_values()
        return {
            name: values[index] if index < len(values) else ""
            for index, name in enumerate(model.field_names)
        }

    def assemble(self, front: List[str], back: List[str], both: List[str]):
        """
        Join bucket blocks into card content.

        Returns (content, side) where side names the only side that has
        content, or None when the divider was used.
        """
        # Both-side fields belong with the question; without front-only
        # fields they are repeated on the answer side too
        front_text = "\n\n".join(front + both)
        back_blocks = back + both if both and not front else back
        back_text = "\n\n".join(back_blocks)

        if front_text and back_text:
            return f"{front_text}\n\n{self.config.divider}\n\n{back_text}", None
        if front_text:
            return front_text, FieldSide.FRONT
        return back_text, FieldSide.BACK

    def extract_fields(
        self,
        content: str,
        field_names: List[str],
        produced: Optional[FieldSide] = FieldSide.FRONT,
    ) -> Dict[str, str]:
        """
        Re-read front/back from assembled content.

        Empty sides are omitted. Without a divider the whole content goes to
        the side that produced it; a divider at position zero puts what
        follows on the front.
        """
        divider = self.config.divider
        index = content.find(divider)
        fields: Dict[str, str] = {}

        if index == -1:
            key = "back" if produced is FieldSide.BACK else "front"
            text = strip_field_prefixes(content, field_names)
            if text:
                fields[key] = text
            return fields

        before = content[:index].strip()
        after = content[index + len(divider):].strip()
        if not before:
            text = strip_field_prefixes(after, field_names)
            if text:
                fields["front"] = text
            return fields

        front_text = strip_field_prefixes(before, field_names)
        back_text = strip_field_prefixes(after, field_names)
        if front_text:
            fields["front"] = front_text
        if back_text:
            fields["back"] = back_text
        return fields


def _prefix_patterns(name: str) -> List[re.Pattern]:
    escaped = re.escape(name)
    return [
        re.compile(rf"^\*\*{escaped}\*\*:[ \t]*"),
        re.compile(rf"^\*{escaped}\*:[ \t]*"),
        re.compile(rf"^{escaped}:[ \t]+"),
    ]


def strip_field_prefixes(text: str, field_names: List[str]) -> str:
    """
    Remove "**Name**: " style labels from the start of each paragraph.

    Only names the model declares are stripped, so a value that happens
    to start with "Note: " survives.

    Example:
        >>> strip_field_prefixes("**Front**: 2+2?", ["Front", "Back"])
        '2+2?'
    """
    if not text or not text.strip():
        return ""

    patterns = [p for name in field_names for p in _prefix_patterns(name)]
    paragraphs = []
    for paragraph in re.split(r"\n{2,}", text):
        paragraph = paragraph.strip()
        for pattern in patterns:
            stripped, count = pattern.subn("", paragraph, count=1)
            if count:
                paragraph = stripped.strip()
                break
        if paragraph:
            paragraphs.append(paragraph)

    return "\n\n".join(paragraphs)
