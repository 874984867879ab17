from dataclasses import dataclass, field

from .types import MatchFailure, ParsedUnit


class EditError(ValueError):
    pass


class ParseError(EditError):
    """A malformed block. Collected by the parser, never raised from it."""

    def __init__(self, reason: str, *, line: int, source: str = "") -> None:
        super().__init__(f"line {line}: {reason}")
        self.reason = reason
        self.line = line
        self.source = source


class MissingFilenameError(ParseError):
    pass


class PathNotFoundError(EditError):
    def __init__(self, path: str, detail: str = "Path not found in project") -> None:
        super().__init__(f"{detail}: {path}")
        self.path = path


class PathEscapeError(PathNotFoundError):
    def __init__(self, path: str) -> None:
        super().__init__(path, detail="Path escapes the project root")


@dataclass(slots=True, eq=False)
class EditSessionError(EditError):
    message: str
    failed: list[MatchFailure] = field(default_factory=list)
    parse_errors: list[ParseError] = field(default_factory=list)
    applied: list[ParsedUnit] = field(default_factory=list)

    def __str__(self) -> str:
        return self.message


class NoChangesError(EditSessionError):
    pass
