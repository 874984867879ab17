from dataclasses import dataclass
from enum import StrEnum
from typing import TypeAlias


class ActionKind(StrEnum):
    REPLACE = "replace"
    WRITE = "write"


Fence: TypeAlias = tuple[str, str]
DEFAULT_FENCE: Fence = ("`" * 3, "`" * 3)


@dataclass(frozen=True, slots=True)
class Replace:
    file_path: str
    old: str
    new: str

    kind = ActionKind.REPLACE


@dataclass(frozen=True, slots=True)
class Write:
    file_path: str
    content: str

    kind = ActionKind.WRITE


EditAction: TypeAlias = Replace | Write


@dataclass(frozen=True, slots=True)
class ParsedUnit:
    action: EditAction
    source: str


@dataclass(frozen=True, slots=True)
class TextEdit:
    start: int
    end: int
    text: str


@dataclass(frozen=True, slots=True)
class Diff:
    """Character spans to replace, positioned against the snapshot the diff was computed from."""

    edits: tuple[TextEdit, ...] = ()

    def is_empty(self) -> bool:
        return not self.edits

    def apply(self, text: str) -> str:
        # Back to front so earlier offsets stay valid.
        for edit in sorted(self.edits, key=lambda e: e.start, reverse=True):
            if not 0 <= edit.start <= edit.end <= len(text):
                raise ValueError(f"Edit span {edit.start}..{edit.end} is outside the document")
            text = text[: edit.start] + edit.text + text[edit.end :]
        return text


@dataclass(frozen=True, slots=True)
class MatchFailure:
    file_path: str
    search: str
    similar_lines: str = ""
    already_applied: bool = False
