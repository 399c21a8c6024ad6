"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

field_sides.py

Decide, per model, whether each field belongs on the question side, the
answer side, or both.

Two passes, first match wins:
1. Semantic: the field name contains a front or back keyword
   ("Question", "Back Extra", "答案", ...).
2. Template: where the field's {{token}} appears in the model's first
   card template (question only -> front, answer only -> back, both -> both).

A field that neither pass can place is kept on both sides and reported
as a low-confidence warning.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Set

from cardport.icons import WARNING
from cardport.models import FieldAnalysis, FieldSide, FieldSideMap, SourceModel


FRONT_KEYWORDS = ("front", "question", "prompt", "问题", "题目", "正面", "问")
BACK_KEYWORDS = ("back", "answer", "explanation", "答案", "背面", "解答", "解释", "答")

# Too short to match as substrings ("a" is in almost every word)
FRONT_EXACT = ("q",)
BACK_EXACT = ("a",)

SECTION_PREFIXES = ("#", "/", "^", "!")
BUILTIN_TOKENS = {"FrontSide", "Card", "Deck", "Subdeck", "CardFlag", "Tags", "Type"}

TEMPLATE_TOKEN_RE = re.compile(r"\{\{([^{}]+?)\}\}")


def extract_template_fields(template: str) -> Set[str]:
    """
    Return the field names referenced by a card template.

    Modifier chains are stripped ({{cloze:Text}}, {{hint:type:Back}} and
    {{tts en_US:Front}} all name the last segment), section markers and
    built-in tokens are skipped.

    Example:
        >>> sorted(extract_template_fields("{{#Hint}}{{hint:Hint}}{{/Hint}}{{Front}}"))
        ['Front', 'Hint']
    """
    found: Set[str] = set()
    if not template or not isinstance(template, str):
        return found

    for match in TEMPLATE_TOKEN_RE.finditer(template):
        token = match.group(1).strip()
        if not token or token.startswith(SECTION_PREFIXES):
            continue
        # Anki forbids ':' in field names, so the field is the last segment
        if ":" in token:
            token = token.rsplit(":", 1)[1].strip()
        if not token or token in BUILTIN_TOKENS:
            continue
        found.add(token)

    return found


def semantic_side(field_name: str) -> Optional[FieldSide]:
    """Side implied by the field's name alone, or None."""
    name = field_name.lower().strip()
    if not name:
        return None

    if name in FRONT_EXACT:
        return FieldSide.FRONT
    if name in BACK_EXACT:
        return FieldSide.BACK

    for keyword in FRONT_KEYWORDS:
        if keyword in name:
            return FieldSide.FRONT
    for keyword in BACK_KEYWORDS:
        if keyword in name:
            return FieldSide.BACK

    return None


def _template_side(in_question: bool, in_answer: bool) -> Optional[FieldSide]:
    if in_question and in_answer:
        return FieldSide.BOTH
    if in_question:
        return FieldSide.FRONT
    if in_answer:
        return FieldSide.BACK
    return None


class FieldSideResolver:
    """Resolve field sides for every model of an import."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.warnings: List[str] = []

    def resolve(self, models: Iterable[SourceModel]) -> FieldSideMap:
        """
        Compute the side of every declared field of every model.

        Never fails: every field gets a side, defaulting to both.
        self.warnings holds the advisories of this call only.
        """
        self.warnings = []
        models = list(models)
        print(f"[fields] Resolving field sides for {len(models)} models")

        side_map: FieldSideMap = {}
        for model in models:
            side_map[model.id] = self.resolve_single(model)
        return side_map

    def resolve_single(self, model: SourceModel) -> Dict[str, FieldSide]:
        return {a.field_name: a.side for a in self.analyze(model)}

    def analyze(self, model: SourceModel) -> List[FieldAnalysis]:
        """
        Explain how each field of a model is placed.

        Low-confidence placements are appended to self.warnings, once per
        field per call.
        """
        question_fields: Set[str] = set()
        answer_fields: Set[str] = set()
        if model.templates:
            main = model.templates[0]
            question_fields = extract_template_fields(main.question_template)
            answer_fields = extract_template_fields(main.answer_template)

        results = []
        for name in model.field_names:
            in_question = name in question_fields
            in_answer = name in answer_fields

            side = semantic_side(name)
            if side is not None:
                results.append(FieldAnalysis(name, side, in_question, in_answer, "high", "semantic"))
                if self.verbose:
                    print(f"[fields] {model.name}.{name} -> {side.value} (name)")
                continue

            side = _template_side(in_question, in_answer)
            if side is not None:
                results.append(FieldAnalysis(name, side, in_question, in_answer, "medium", "template"))
                if self.verbose:
                    print(f"[fields] {model.name}.{name} -> {side.value} (template)")
                continue

            message = (
                f"Field '{name}' of model '{model.name}' is not used by any "
                f"template; keeping it on both sides"
            )
            self.warnings.append(message)
            print(f"[fields:warn] {WARNING} {message}")
            results.append(FieldAnalysis(name, FieldSide.BOTH, False, False, "low", "default"))

        return results
