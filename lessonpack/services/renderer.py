"""
Lesson pack → Google Docs edit instructions.

Public API
----------
render(pack, labels)              -> List[EditInstruction]
render_with_cursor(pack, labels, page_break_before_appendix) -> (instructions, final cursor)
examples_table(pack)              -> TableBlock for the "Examples at a glance" appendix
locate_table_cells(document, at)  -> per-cell start offsets of a freshly inserted table
build_table_fill(block, cells)    -> fill instructions for those cells

Offsets are absolute positions in the document's linear text, measured in
UTF-16 code units (the unit the Docs API indexes by).  Index 0 is the
document-start marker, so the builder's cursor starts at 1 and only moves
forward.

Tables are a two-phase protocol because cell offsets only exist once the
table does: phase one inserts the empty table shape and applies it; phase two
reads the resulting cell offsets from a fresh copy of the document and emits
the fill instructions.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from lessonpack.config import CaseLabels, settings
from lessonpack.models.lesson_pack import Argument, Example, LessonPack

logger = logging.getLogger(__name__)

BULLET_PRESET = "BULLET_DISC_CIRCLE_SQUARE"
NO_CONTENT = "(no content)"


def utf16_len(text: str) -> int:
    """Length of *text* in UTF-16 code units."""
    return len(text.encode("utf-16-le")) // 2


# ---------------------------------------------------------------------------
# Edit instructions
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class InsertText:
    index: int
    text: str

    def to_request(self) -> Dict[str, Any]:
        return {"insertText": {"location": {"index": self.index}, "text": self.text}}


@dataclasses.dataclass(frozen=True)
class UpdateParagraphStyle:
    start: int
    end: int
    named_style: str

    def to_request(self) -> Dict[str, Any]:
        return {
            "updateParagraphStyle": {
                "range": {"startIndex": self.start, "endIndex": self.end},
                "paragraphStyle": {"namedStyleType": self.named_style},
                "fields": "namedStyleType",
            }
        }


@dataclasses.dataclass(frozen=True)
class UpdateTextStyle:
    start: int
    end: int
    bold: bool = True

    def to_request(self) -> Dict[str, Any]:
        return {
            "updateTextStyle": {
                "range": {"startIndex": self.start, "endIndex": self.end},
                "textStyle": {"bold": self.bold},
                "fields": "bold",
            }
        }


@dataclasses.dataclass(frozen=True)
class CreateParagraphBullets:
    start: int
    end: int
    preset: str = BULLET_PRESET

    def to_request(self) -> Dict[str, Any]:
        return {
            "createParagraphBullets": {
                "range": {"startIndex": self.start, "endIndex": self.end},
                "bulletPreset": self.preset,
            }
        }


@dataclasses.dataclass(frozen=True)
class InsertTable:
    index: int
    rows: int
    columns: int

    def to_request(self) -> Dict[str, Any]:
        return {
            "insertTable": {
                "location": {"index": self.index},
                "rows": self.rows,
                "columns": self.columns,
            }
        }


@dataclasses.dataclass(frozen=True)
class InsertPageBreak:
    index: int

    def to_request(self) -> Dict[str, Any]:
        return {"insertPageBreak": {"location": {"index": self.index}}}


@dataclasses.dataclass(frozen=True)
class DeleteContentRange:
    start: int
    end: int

    def to_request(self) -> Dict[str, Any]:
        return {
            "deleteContentRange": {
                "range": {"startIndex": self.start, "endIndex": self.end}
            }
        }


EditInstruction = Union[
    InsertText,
    UpdateParagraphStyle,
    UpdateTextStyle,
    CreateParagraphBullets,
    InsertTable,
    InsertPageBreak,
    DeleteContentRange,
]


def to_requests(instructions: Sequence[EditInstruction]) -> List[Dict[str, Any]]:
    return [instruction.to_request() for instruction in instructions]


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class DocsBuilder:
    """Accumulates edit instructions while tracking the insertion cursor."""

    def __init__(self, start_index: int = 1) -> None:
        self.cursor = start_index
        self._instructions: List[EditInstruction] = []

    @property
    def instructions(self) -> List[EditInstruction]:
        return self._instructions

    def _insert(self, text: str) -> int:
        start = self.cursor
        self._instructions.append(InsertText(index=start, text=text))
        self.cursor += utf16_len(text)
        return start

    def add_heading(self, level: int, text: str) -> None:
        heading = f"{text}\n"
        start = self._insert(heading)
        self._instructions.append(
            UpdateParagraphStyle(
                start=start,
                end=start + utf16_len(heading),
                named_style=f"HEADING_{level}",
            )
        )

    def add_paragraph(self, text: str) -> None:
        self._insert(f"{text}\n" if text else "\n")

    def add_bullet_list(self, items: Sequence[str]) -> None:
        if not items:
            return
        block = "".join(f"{item}\n" for item in items)
        start = self._insert(block)
        self._instructions.append(
            CreateParagraphBullets(start=start, end=start + utf16_len(block))
        )

    def add_bold_label_line(self, label: str, text: str) -> None:
        start = self._insert(f"{label}: {text}\n")
        self._instructions.append(
            UpdateTextStyle(start=start, end=start + utf16_len(label) + 1)
        )

    def add_page_break(self) -> None:
        self._instructions.append(InsertPageBreak(index=self.cursor))
        self.cursor += 1

    def add_table_shape(self, block: "TableBlock") -> int:
        """
        Phase one of a table insertion: emit the empty table shape at the
        cursor and return the index it was inserted at.  The cursor is not
        advanced; the caller must apply these instructions, then re-fetch the
        document and continue with ``locate_table_cells`` / ``build_table_fill``.
        """
        at = self.cursor
        self._instructions.append(
            InsertTable(index=at, rows=len(block.rows) + 1, columns=len(block.headers))
        )
        return at


# ---------------------------------------------------------------------------
# Tables (two-phase)
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class TableBlock:
    headers: List[str]
    rows: List[List[str]]


def examples_table(pack: LessonPack) -> TableBlock:
    """Quick-reference table over the examples bank."""
    rows = [
        [
            example.label,
            example.why_it_matters,
            ", ".join(source.title for source in example.sources),
        ]
        for example in pack.examples_bank
    ]
    return TableBlock(headers=["Example", "Why it matters", "Sources"], rows=rows)


def locate_table_cells(document: Dict[str, Any], at_index: int) -> Optional[List[List[int]]]:
    """
    Start offsets of every cell of the table inserted at *at_index*.

    Looks for the first table element starting at or after *at_index* in the
    fetched document body, falling back to the last table in the body.
    Returns ``None`` when the document holds no table.
    """
    content = (document.get("body") or {}).get("content") or []
    tables = [el for el in content if el.get("table")]
    if not tables:
        return None

    target = next(
        (el for el in tables if el.get("startIndex", 0) >= at_index),
        tables[-1],
    )
    cells: List[List[int]] = []
    for row in target["table"].get("tableRows") or []:
        cells.append([cell.get("startIndex", 0) for cell in row.get("tableCells") or []])
    return cells


def build_table_fill(block: TableBlock, cells: List[List[int]]) -> List[EditInstruction]:
    """
    Phase two of a table insertion.

    Text goes into each cell's paragraph (cell start + 1).  Cells are filled
    from the highest offset down so that every insertion leaves the offsets
    of the cells still to be filled untouched.
    """
    grid = [block.headers] + block.rows
    targets: List[Tuple[int, str, bool]] = []
    for row_idx, row in enumerate(grid):
        if row_idx >= len(cells):
            break
        for col_idx, text in enumerate(row):
            if col_idx >= len(cells[row_idx]) or not text:
                continue
            targets.append((cells[row_idx][col_idx] + 1, text, row_idx == 0))

    fill: List[EditInstruction] = []
    for index, text, is_header in sorted(targets, key=lambda t: t[0], reverse=True):
        fill.append(InsertText(index=index, text=text))
        if is_header:
            fill.append(UpdateTextStyle(start=index, end=index + utf16_len(text)))
    return fill


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def _render_argument_section(
    builder: DocsBuilder, heading: str, arguments: Sequence[Argument]
) -> None:
    builder.add_heading(2, heading)
    if not arguments:
        builder.add_paragraph(NO_CONTENT)
        return

    for number, argument in enumerate(arguments, start=1):
        builder.add_heading(3, f"{number}. {argument.claim}")
        builder.add_bold_label_line("Mechanism", argument.mechanism)
        builder.add_paragraph("Impacts:")
        builder.add_bullet_list(argument.impacts)

        if argument.stakeholders:
            builder.add_paragraph("Stakeholders affected:")
            builder.add_bullet_list(argument.stakeholders)

        if argument.comparative:
            builder.add_bold_label_line("Comparative", argument.comparative)

        if argument.preempts:
            builder.add_paragraph("Pre-empts:")
            builder.add_bullet_list(argument.preempts)

        if argument.examples:
            builder.add_paragraph("Examples:")
            for example in argument.examples:
                builder.add_paragraph(f"{example.label} – {example.what_happened}")
                builder.add_bold_label_line("Why it matters", example.why_it_matters)


def _render_bank_example(builder: DocsBuilder, example: Example) -> None:
    builder.add_heading(3, example.label)
    builder.add_bold_label_line("What happened", example.what_happened)
    builder.add_bold_label_line("Why it matters", example.why_it_matters)
    if example.how_to_use:
        builder.add_paragraph("How to use:")
        builder.add_bullet_list(example.how_to_use)
    builder.add_paragraph("Sources:")
    builder.add_bullet_list([f"{source.title} – {source.url}" for source in example.sources])


def _labelled_list(builder: DocsBuilder, label: str, items: Optional[Sequence[str]]) -> None:
    if items:
        builder.add_paragraph(f"{label}:")
        builder.add_bullet_list(items)


def render_with_cursor(
    pack: LessonPack,
    labels: Optional[CaseLabels] = None,
    page_break_before_appendix: bool = False,
) -> Tuple[List[EditInstruction], int]:
    labels = labels or settings.case_labels()
    builder = DocsBuilder()

    builder.add_heading(1, pack.title)
    if pack.motion_or_topic:
        builder.add_bold_label_line("Motion", pack.motion_or_topic)
    if pack.context:
        builder.add_bold_label_line("Context", pack.context)

    framework = pack.first_principles
    builder.add_heading(2, "First Principles")
    builder.add_bold_label_line("Burden", framework.burden)
    builder.add_bold_label_line("Metric", framework.metric)
    _labelled_list(builder, "Assumptions", framework.assumptions)
    _labelled_list(builder, "Theories", framework.theories)
    _labelled_list(builder, "Tests", framework.tests)

    _render_argument_section(builder, labels.gov, pack.gov_case)
    _render_argument_section(builder, labels.opp, pack.opp_case)

    if pack.counter_cases:
        _render_argument_section(builder, "Counter Cases", pack.counter_cases)

    if pack.extensions:
        builder.add_heading(2, "Extensions")
        builder.add_bullet_list(pack.extensions)

    if pack.rebuttal_ladders:
        builder.add_heading(2, "Rebuttal Ladders")
        for ladder in pack.rebuttal_ladders:
            builder.add_heading(3, ladder.target)
            builder.add_bullet_list(ladder.ladder)

    weighing = pack.weighing
    builder.add_heading(2, "Weighing")
    builder.add_bold_label_line("Method", weighing.method)
    _labelled_list(builder, "Adjudicator Notes", weighing.adjudicator_notes)
    _labelled_list(builder, "Common Pitfalls", weighing.common_pitfalls)
    _labelled_list(builder, "POI Advice", weighing.poi_advice)
    _labelled_list(builder, "Whip Advice", weighing.whip_advice)

    if pack.drills:
        builder.add_heading(2, "Drills")
        builder.add_bullet_list(pack.drills)

    if pack.glossary:
        builder.add_heading(2, "Glossary")
        for entry in pack.glossary:
            builder.add_bold_label_line(entry.term, entry.definition)

    if page_break_before_appendix:
        builder.add_page_break()

    if pack.examples_bank:
        builder.add_heading(2, "Examples Bank")
        for example in pack.examples_bank:
            _render_bank_example(builder, example)

    builder.add_heading(2, "Sources")
    for source in pack.sources:
        builder.add_paragraph(f"{source.title} – {source.url}")
        if source.note:
            builder.add_bold_label_line("Note", source.note)

    if pack.input_metadata.filename:
        builder.add_paragraph(f"Input file: {pack.input_metadata.filename}")

    logger.debug(
        "render: %d instructions, cursor at %d", len(builder.instructions), builder.cursor
    )
    return builder.instructions, builder.cursor


def render(pack: LessonPack, labels: Optional[CaseLabels] = None) -> List[EditInstruction]:
    instructions, _cursor = render_with_cursor(pack, labels)
    return instructions
