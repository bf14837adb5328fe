"""Plan document parsing and in-place mutation.

A plan document is a sequence of phase blocks::

    {
      id: 'phase-1',
      name: 'Phase 1 - Foundation',
      future: false,
      checklist: [
        { text: 'Create src/app/main.py skeleton', status: 'todo' },
        { text: 'Wire runtime to scheduler', status: 'done' },
      ],
    },

The document is parsed into a tree of phases and entries that remembers the
source offsets of every status token and every checklist's closing bracket.
Mutations are recorded as splices against the source text, so everything
the tree does not touch is written back unchanged.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)

PHASE_ANCHOR = re.compile(r"\{\s*\n\s*id:\s*'")
PHASE_ID_PATTERN = re.compile(r"^((?:[^'\\\n]|\\.)+)'")
PHASE_NAME_PATTERN = re.compile(r"name:\s*'((?:[^'\\\n]|\\.)+)'")
PHASE_FUTURE_PATTERN = re.compile(r"future:\s*(true|false)")
CHECKLIST_PATTERN = re.compile(r"checklist:\s*\[")
ENTRY_PATTERN = re.compile(
    r"\{\s*text:\s*'((?:[^'\\\n]|\\.)*)',\s*status:\s*'(todo|wip|done)'\s*,?\s*\}"
)
_ESCAPE_PATTERN = re.compile(r"\\(.)")


class DocumentError(RuntimeError):
    """Raised when the plan document cannot be read or written."""


class Status(StrEnum):
    TODO = "todo"
    WIP = "wip"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class WorkItem:
    phase_id: str
    phase_name: str
    phase_index: int
    index_in_phase: int
    text: str
    status: Status = Status.TODO
    future: bool = False


@dataclass(frozen=True, slots=True)
class PhaseProgress:
    phase_id: str
    phase_name: str
    done: int
    wip: int
    todo: int

    @property
    def total(self) -> int:
        return self.done + self.wip + self.todo

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.done * 100 / self.total)


@dataclass(slots=True)
class ChecklistEntry:
    text: str
    status: Status
    status_span: tuple[int, int]
    end: int


@dataclass(slots=True)
class PhaseBlock:
    phase_id: str
    name: str
    index: int
    future: bool
    entries: list[ChecklistEntry] = field(default_factory=list)
    checklist_start: int | None = None
    checklist_close: int | None = None


def escape_text(text: str) -> str:
    flattened = " ".join(text.splitlines())
    return flattened.replace("\\", "\\\\").replace("'", "\\'")


def unescape_text(raw: str) -> str:
    return _ESCAPE_PATTERN.sub(r"\1", raw)


def _find_closing_bracket(source: str, start: int, stop: int) -> int | None:
    """Return the offset of the ``]`` closing the bracket opened before ``start``."""
    depth = 1
    index = start
    quote: str | None = None
    while index < stop:
        char = source[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "'\"`":
            quote = char
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    return None


class PlanDocument:
    def __init__(self, source: str, phases: list[PhaseBlock]) -> None:
        self.source = source
        self.phases = phases
        self._splices: list[tuple[int, int, str]] = []

    @classmethod
    def parse(cls, source: str) -> PlanDocument:
        anchors = list(PHASE_ANCHOR.finditer(source))
        phases: list[PhaseBlock] = []
        for ordinal, anchor in enumerate(anchors, start=1):
            start = anchor.end()
            stop = anchors[ordinal].start() if ordinal < len(anchors) else len(source)
            phases.append(cls._parse_block(source, start, stop, ordinal))
        return cls(source, phases)

    @staticmethod
    def _parse_block(source: str, start: int, stop: int, ordinal: int) -> PhaseBlock:
        block = source[start:stop]
        id_match = PHASE_ID_PATTERN.match(block)
        phase_id = unescape_text(id_match.group(1)) if id_match else f"phase-{ordinal}"
        name_match = PHASE_NAME_PATTERN.search(block)
        name = unescape_text(name_match.group(1)) if name_match else phase_id
        future_match = PHASE_FUTURE_PATTERN.search(block)
        phase = PhaseBlock(
            phase_id=phase_id,
            name=name,
            index=ordinal,
            future=bool(future_match and future_match.group(1) == "true"),
        )

        checklist_match = CHECKLIST_PATTERN.search(block)
        if checklist_match is None:
            logger.debug("Phase %s has no checklist", phase_id)
            return phase
        region_start = start + checklist_match.end()
        close = _find_closing_bracket(source, region_start, stop)
        if close is None:
            logger.warning("Phase %s has an unterminated checklist; skipping its items", phase_id)
            return phase

        phase.checklist_start = region_start
        phase.checklist_close = close
        for match in ENTRY_PATTERN.finditer(source, region_start, close):
            phase.entries.append(
                ChecklistEntry(
                    text=unescape_text(match.group(1)),
                    status=Status(match.group(2)),
                    status_span=match.span(2),
                    end=match.end(),
                )
            )
        return phase

    def items(self) -> list[WorkItem]:
        return [
            WorkItem(
                phase_id=phase.phase_id,
                phase_name=phase.name,
                phase_index=phase.index,
                index_in_phase=position,
                text=entry.text,
                status=entry.status,
                future=phase.future,
            )
            for phase in self.phases
            for position, entry in enumerate(phase.entries)
        ]

    def find_phase(self, phase_id: str) -> PhaseBlock | None:
        for phase in self.phases:
            if phase.phase_id == phase_id:
                return phase
        return None

    def set_status(self, text: str, *, current: Status, new: Status) -> bool:
        for phase in self.phases:
            for entry in phase.entries:
                if entry.text == text and entry.status is current:
                    start, end = entry.status_span
                    self._splices.append((start, end, new.value))
                    entry.status = new
                    return True
        return False

    def append_entries(self, phase_id: str, texts: list[str]) -> bool:
        phase = self.find_phase(phase_id)
        if phase is None or phase.checklist_close is None or phase.checklist_start is None:
            return False
        if not texts:
            return True

        close = phase.checklist_close
        line_start = self.source.rfind("\n", 0, close) + 1
        closing_indent = re.match(r"[ \t]*", self.source[line_start:]).group(0)
        bracket_on_own_line = self.source[line_start:close].strip() == ""

        if phase.entries:
            last = phase.entries[-1]
            if "," not in self.source[last.end:close]:
                self._splices.append((last.end, last.end, ","))
        if phase.entries and bracket_on_own_line:
            entry_line = self.source.rfind("\n", 0, last.end) + 1
            indent = re.match(r"[ \t]*", self.source[entry_line:]).group(0)
        else:
            indent = closing_indent + "  "

        rendered = "".join(
            f"{indent}{{ text: '{escape_text(text)}', status: '{Status.TODO.value}' }},\n"
            for text in texts
        )
        if bracket_on_own_line:
            self._splices.append((line_start, line_start, rendered))
        else:
            self._splices.append((close, close, "\n" + rendered + closing_indent))
        return True

    @property
    def dirty(self) -> bool:
        return bool(self._splices)

    def render(self) -> str:
        output = self.source
        # Splices at the same offset keep their insertion order.
        ordered = sorted(enumerate(self._splices), key=lambda pair: (pair[1][0], pair[0]))
        for _, (start, end, replacement) in reversed(ordered):
            output = output[:start] + replacement + output[end:]
        return output

    def progress(self) -> list[PhaseProgress]:
        report: list[PhaseProgress] = []
        for phase in self.phases:
            counts = {status: 0 for status in Status}
            for entry in phase.entries:
                counts[entry.status] += 1
            report.append(
                PhaseProgress(
                    phase_id=phase.phase_id,
                    phase_name=phase.name,
                    done=counts[Status.DONE],
                    wip=counts[Status.WIP],
                    todo=counts[Status.TODO],
                )
            )
        return report


class DocumentStore:
    """File-backed access to the plan document; every call re-reads the file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> PlanDocument:
        try:
            with open(self.path, encoding="utf-8", newline="") as handle:
                source = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentError(f"Cannot read plan document {self.path}: {exc}") from exc
        return PlanDocument.parse(source)

    def _write(self, document: PlanDocument) -> None:
        rendered = document.render()
        directory = self.path.parent
        try:
            fd, temp_path = tempfile.mkstemp(prefix=".specloop-plan-", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(rendered)
            os.replace(temp_path, self.path)
        except OSError as exc:
            raise DocumentError(f"Cannot write plan document {self.path}: {exc}") from exc

    def list_items(self) -> list[WorkItem]:
        try:
            return self._read().items()
        except DocumentError as exc:
            logger.warning("%s", exc)
            return []

    def mark_done(self, text: str) -> bool:
        try:
            document = self._read()
            if not document.set_status(text, current=Status.TODO, new=Status.DONE):
                return False
            self._write(document)
        except DocumentError as exc:
            logger.warning("mark_done failed: %s", exc)
            return False
        return True

    def append_items(self, phase_id: str, texts: list[str]) -> None:
        if not texts:
            return
        try:
            document = self._read()
            if not document.append_entries(phase_id, texts):
                logger.warning("Phase %s not found in %s; nothing appended", phase_id, self.path)
                return
            self._write(document)
        except DocumentError as exc:
            logger.warning("append_items failed: %s", exc)

    def progress(self) -> list[PhaseProgress]:
        try:
            return self._read().progress()
        except DocumentError as exc:
            logger.warning("%s", exc)
            return []
