#!/usr/bin/env python3
"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

import_apkg.py

Import an Anki .apkg deck: cards plus media.

Pipeline:
1. Read the archive and its embedded database
2. Resolve field sides and save media (independent, run side by side)
3. Build one card per note across a worker pool
4. Collect cards, the media manifest, and every error and warning

Fatal problems (unreadable ZIP, unsupported format, damaged database)
raise. Everything else is recorded on the ImportResult so callers can
report "N of M notes imported".

Usage:
    cardport-import deck.apkg
    cardport-import deck.apkg --media-dir vault --output vault/cards
    cardport-import deck.apkg --dry-run
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, List, Optional

import frontmatter

from cardport.archive_reader import ArchiveReader, ArchiveSource
from cardport.card_builder import CardBuilder
from cardport.config import ImportConfig, load_config
from cardport.errors import CardportError, EmptyNoteError, ImportCancelled
from cardport.field_sides import FieldSideResolver
from cardport.icons import ERROR, INFO, SUCCESS, WARNING
from cardport.media_processor import MediaProcessor
from cardport.media_storage import FileSystemMediaStorage, MediaStorage, sanitize_filename
from cardport.models import (
    ApkgData,
    BuildResult,
    Card,
    FieldSideMap,
    ImportIssue,
    ImportProgress,
    ImportResult,
    MediaManifest,
    SourceModel,
    SourceNote,
)


DEFAULT_COLLECTION_NAME = "Imported Deck"

ProgressCallback = Callable[[ImportProgress], None]


class CancellationToken:
    """Thread-safe flag checked between notes."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelled(message="Import cancelled")


def default_collection_name(apkg: ApkgData, source: ArchiveSource) -> str:
    """First real deck name, else the archive file stem, else a fixed name."""
    for deck in apkg.decks:
        if deck.name.strip():
            return deck.name.strip()
    if isinstance(source, (str, Path)):
        stem = Path(source).stem.strip()
        if stem:
            return stem
    return DEFAULT_COLLECTION_NAME


class ApkgImporter:
    """
    Run one import against a storage adapter.

    A fresh importer may be built per import; it holds no state between runs.
    """

    def __init__(self, storage: MediaStorage, config: Optional[ImportConfig] = None):
        self.config = config or ImportConfig()
        self.storage = storage
        self.reader = ArchiveReader(self.config)
        self.media_processor = MediaProcessor(storage, self.config)
        self.builder = CardBuilder(self.config)

    def run(
        self,
        source: ArchiveSource,
        collection_name: Optional[str] = None,
        deck_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        """
        Import an archive.

        Args:
            source: Archive bytes, path, or binary file object
            collection_name: Media folder / collection name (default: deck name)
            deck_id: Target deck id in the card store (default: source deck id)
            cancel: Token checked between notes
            progress: Called with ImportProgress at each stage

        Returns:
            ImportResult with cards, manifest, stats, errors and warnings

        Raises:
            CorruptArchive, UnsupportedFormat, CorruptDatabase: Fatal archive problems
            ImportCancelled: If cancel was set before the import finished
        """
        started = time.monotonic()
        cancel = cancel or CancellationToken()

        def report(stage: str, fraction: float, message: str, completed=None, total=None):
            if progress is not None:
                progress(ImportProgress(stage, fraction, message, completed, total))

        # Stage 1: archive
        report("parsing", 0.0, "Reading archive")
        apkg = self.reader.parse(source)
        cancel.raise_if_cancelled()

        result = ImportResult(metadata=apkg.metadata)
        result.stats.total_notes = len(apkg.notes)
        result.warnings.extend(ImportIssue(stage="parsing", message=w) for w in apkg.warnings)

        name = collection_name or default_collection_name(apkg, source)
        if deck_id is None:
            deck_id = str(apkg.decks[0].id) if apkg.decks else ""

        # Stage 2: field sides and media have no dependency on each other
        report("analyzing", 0.2, f"Analyzing {len(apkg.models)} models")
        resolver = FieldSideResolver(verbose=self.config.verbose)
        with ThreadPoolExecutor(max_workers=2) as pool:
            sides_future = pool.submit(resolver.resolve, apkg.models)
            media_future = pool.submit(self.media_processor.process, apkg.media, name)
            field_sides = sides_future.result()
            report("media", 0.3, f"Saving {len(apkg.media)} media files")
            media = media_future.result()

        result.warnings.extend(ImportIssue(stage="analyzing", message=w) for w in resolver.warnings)
        result.errors.extend(
            ImportIssue(stage="media", message=f"{e.file}: {e.error}", code=e.code)
            for e in media.errors
        )
        result.manifest = media.manifest
        result.stats.media_files = len(media.manifest.entries)
        result.stats.media_total_size = media.stats.total_size
        cancel.raise_if_cancelled()

        # Stage 3: cards
        self._build_cards(apkg, field_sides, media.manifest, deck_id, cancel, result, report)

        result.cards.sort(key=lambda card: card.source_metadata.get("note_id", 0))
        result.duration_ms = int((time.monotonic() - started) * 1000)

        report("done", 1.0, result.summary())
        icon = SUCCESS if result.success else WARNING
        print(f"[import] {icon} {result.summary()} in {result.duration_ms} ms")
        return result

    def _build_cards(
        self,
        apkg: ApkgData,
        field_sides: FieldSideMap,
        manifest: MediaManifest,
        deck_id: str,
        cancel: CancellationToken,
        result: ImportResult,
        report,
    ) -> None:
        models = apkg.model_by_id()
        total = len(apkg.notes)
        report("building", 0.4, f"Building {total} cards", 0, total)

        def fail(note: SourceNote, message: str, code: str) -> None:
            result.stats.failed_cards += 1
            result.warnings.append(ImportIssue(stage="building", message=message, note_id=note.id, code=code))
            print(f"[import:warn] {WARNING} Note {note.id}: {message}")

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            futures = {}
            for note in apkg.notes:
                model = models.get(note.model_id)
                if model is None:
                    fail(note, f"Model {note.model_id} not found", "MODEL_NOT_FOUND")
                    continue
                future = pool.submit(self._build_one, note, model, field_sides, manifest, deck_id, cancel)
                futures[future] = note

            completed = 0
            try:
                for future in as_completed(futures):
                    note = futures[future]
                    try:
                        built = future.result()
                    except EmptyNoteError as e:
                        fail(note, e.message, "BUILD_FAILED")
                    else:
                        result.cards.append(built.card)
                        result.stats.imported_cards += 1
                        result.warnings.extend(
                            ImportIssue(stage="building", message=w, note_id=note.id)
                            for w in built.warnings
                        )

                    completed += 1
                    report(
                        "building",
                        0.4 + 0.6 * completed / max(len(futures), 1),
                        f"Built {completed}/{len(futures)} cards",
                        completed,
                        len(futures),
                    )
            except ImportCancelled:
                for future in futures:
                    future.cancel()
                print(f"[import] {INFO} Import cancelled after {completed} notes")
                raise

    def _build_one(
        self,
        note: SourceNote,
        model: SourceModel,
        field_sides: FieldSideMap,
        manifest: MediaManifest,
        deck_id: str,
        cancel: CancellationToken,
    ) -> BuildResult:
        cancel.raise_if_cancelled()
        return self.builder.build(note, model, field_sides, manifest, deck_id)


# ============================================================================
# Card export
# ============================================================================

def write_cards(cards: List[Card], output_dir: Path) -> List[Path]:
    """
    Write each card as a markdown file with YAML frontmatter.

    Returns:
        Paths of the written files
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []

    for card in cards:
        meta = card.source_metadata
        post = frontmatter.Post(
            card.raw_content,
            id=card.id,
            deck_id=card.deck_id,
            card_type=card.card_type,
            tags=card.tags,
            note_id=meta.get("note_id"),
            model=meta.get("model_name"),
            created_at=card.created_at,
        )
        path = output_dir / f"{sanitize_filename(card.id)}.md"
        path.write_text(frontmatter.dumps(post), encoding="utf-8")
        written.append(path)

    print(f"[import] Wrote {len(written)} cards to {output_dir}")
    return written


# ============================================================================
# CLI
# ============================================================================

def dry_run(apkg_path: Path, config: ImportConfig) -> None:
    """Report what an import would produce without writing anything."""
    apkg = ArchiveReader(config).parse(apkg_path)
    resolver = FieldSideResolver(verbose=config.verbose)
    side_map = resolver.resolve(apkg.models)

    print(f"\n{INFO} Dry run: {apkg_path.name} ({apkg.format.description})")
    print(f"  Collection: {default_collection_name(apkg, apkg_path)}")
    print(f"  Models: {len(apkg.models)}")
    for model in apkg.models:
        sides = ", ".join(f"{n}={s.value}" for n, s in side_map.get(model.id, {}).items())
        print(f"    {model.name}: {sides}")
    print(f"  Decks: {len(apkg.decks)}")
    print(f"  Notes: {len(apkg.notes)}")
    print(f"  Media files: {len(apkg.media)}")
    print(f"  Warnings: {len(apkg.warnings) + len(resolver.warnings)}")


def main():
    parser = argparse.ArgumentParser(
        description="Import an Anki .apkg deck as markdown cards and media"
    )
    parser.add_argument(
        "apkg",
        type=Path,
        help="Path to .apkg file"
    )
    parser.add_argument(
        "--media-dir", "-m",
        type=Path,
        default=Path.cwd(),
        help="Root directory for imported media (default: current directory)"
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Write one markdown file per card into this directory"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="YAML config file (default: ./cardport.yaml if present)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be imported without making changes"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print per-file and per-card details"
    )

    args = parser.parse_args()

    if not args.apkg.is_file():
        print(f"{ERROR} APKG file not found: {args.apkg}")
        return 1

    if args.apkg.suffix.lower() != ".apkg":
        print(f"{WARNING} Warning: File does not have .apkg extension")

    try:
        config = load_config(args.config)
        if args.verbose:
            config.verbose = True

        if args.dry_run:
            dry_run(args.apkg, config)
            return 0

        storage = FileSystemMediaStorage(args.media_dir, media_root=config.media_root)
        result = ApkgImporter(storage, config).run(args.apkg)

        if args.output is not None:
            write_cards(result.cards, args.output)

        for issue in result.errors:
            print(f"  {ERROR} [{issue.stage}] {issue.message}")
        for issue in result.warnings:
            prefix = f"note {issue.note_id}: " if issue.note_id is not None else ""
            print(f"  {WARNING} [{issue.stage}] {prefix}{issue.message}")

        return 0

    except CardportError as e:
        print(f"\n{ERROR} Import failed ({e.category}): {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
