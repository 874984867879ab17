import difflib
import logging
import re
from enum import StrEnum
from pathlib import Path
from typing import Sequence

from .errors import MissingFilenameError, ParseError
from .types import DEFAULT_FENCE, Fence, ParsedUnit, Replace, Write

logger = logging.getLogger(__name__)

HEAD = r"^<{5,9} SEARCH>?\s*$"
DIVIDER = r"^={5,9}\s*$"
UPDATED = r"^>{5,9} REPLACE\s*$"
WRITE_HEAD = r"^<{5,9} WRITE\s*$"
WRITE_END = r"^>{5,9} WRITE\s*$"

DIVIDER_ERR = "======="
UPDATED_ERR = ">>>>>>> REPLACE"
WRITE_END_ERR = ">>>>>>> WRITE"

head_pattern = re.compile(HEAD)
divider_pattern = re.compile(DIVIDER)
updated_pattern = re.compile(UPDATED)
write_head_pattern = re.compile(WRITE_HEAD)
write_end_pattern = re.compile(WRITE_END)

missing_filename_err = (
    "Bad/missing filename. The filename must be alone on the line before the opening fence"
    " {fence[0]}"
)

# Always be willing to treat triple-backticks as a fence when searching for filenames.
triple_backticks = "`" * 3

LOOKBACK_LINES = 3


class _State(StrEnum):
    PROSE = "prose"
    SEARCH = "search"
    REPLACE = "replace"
    WRITE = "write"
    SKIP = "skip"


_EXPECTED = {
    _State.SEARCH: DIVIDER_ERR,
    _State.REPLACE: UPDATED_ERR,
    _State.WRITE: WRITE_END_ERR,
}


def strip_filename(filename: str, fence: Fence) -> str | None:
    filename = filename.strip()

    if filename == "...":
        return None

    for start_fence in (fence[0], triple_backticks):
        if filename.startswith(start_fence):
            candidate = filename[len(start_fence) :]
            if candidate and ("." in candidate or "/" in candidate):
                return candidate
            return None

    filename = filename.rstrip(":")
    filename = filename.lstrip("#")
    filename = filename.strip()
    filename = filename.strip("`")
    filename = filename.strip("*")
    return filename


def _is_fence(line: str, fence: Fence) -> bool:
    return line.startswith(fence[0]) or line.startswith(triple_backticks)


def find_filename(lines: Sequence[str], fence: Fence) -> tuple[int, list[str]]:
    """
    Look back through the lines preceding a start marker for file names.

    Models sometimes wrap the name in its own fence before reopening one for
    the block, so keep walking back while the lines are fences:

     ```python
    word_count.py
    ```
    ```python
    <<<<<<< SEARCH

    Returns the index of the earliest line that named a file (``len(lines)``
    when none did) and the names found, nearest first.
    """
    first = len(lines)
    filenames: list[str] = []
    for index in range(len(lines) - 1, max(-1, len(lines) - 1 - LOOKBACK_LINES), -1):
        line = lines[index]
        filename = strip_filename(line, fence)
        if filename:
            filenames.append(filename)
            first = index

        # Only continue as long as we keep seeing fences.
        if not _is_fence(line.strip(), fence):
            break

    return first, filenames


def pick_filename(filenames: Sequence[str], valid_fnames: Sequence[str] | None) -> str:
    if valid_fnames:
        # Exact match first.
        for fname in filenames:
            if fname in valid_fnames:
                return fname

        # Basename match.
        for fname in filenames:
            for valid_name in valid_fnames:
                if fname == Path(valid_name).name:
                    return valid_name

        for fname in filenames:
            close_matches = difflib.get_close_matches(fname, valid_fnames, n=1, cutoff=0.8)
            if len(close_matches) == 1:
                return close_matches[0]

    # Prefer a name with an extension.
    for fname in filenames:
        if "." in fname:
            return fname

    return filenames[0]


class EditActionParser:
    """Incremental parser turning streamed model output into edit actions.

    Only complete lines are consumed; a trailing partial line waits for the
    next chunk. Call `finish` once the stream is over so the last line is
    read and any open block is reported.

    Example::

        parser = EditActionParser()
        async for chunk in stream:
            for unit in parser.parse_chunk(chunk):
                ...
        parser.finish()
        errors = parser.errors()
    """

    def __init__(
        self,
        fence: Fence = DEFAULT_FENCE,
        valid_fnames: Sequence[str] | None = None,
    ) -> None:
        self.fence = fence
        self.valid_fnames = list(valid_fnames or [])
        self._pending = ""
        self._line_no = 0
        self._state = _State.PROSE
        self._recent: list[str] = []
        self._current_filename: str | None = None
        self._candidates: list[str] = []
        self._block: list[str] = []
        self._search: list[str] = []
        self._replace: list[str] = []
        self._errors: list[ParseError] = []
        self._finished = False

    def errors(self) -> list[ParseError]:
        return list(self._errors)

    def parse_chunk(self, chunk: str) -> list[ParsedUnit]:
        if self._finished:
            raise RuntimeError("Cannot parse more output after finish()")

        text = self._pending + chunk
        units: list[ParsedUnit] = []
        start = 0
        while True:
            end = text.find("\n", start)
            if end < 0:
                break
            unit = self._feed_line(text[start : end + 1])
            if unit is not None:
                units.append(unit)
            start = end + 1

        self._pending = text[start:]
        return units

    def finish(self) -> list[ParsedUnit]:
        if self._finished:
            return []

        units: list[ParsedUnit] = []
        if self._pending:
            line, self._pending = self._pending, ""
            unit = self._feed_line(line)
            if unit is not None:
                units.append(unit)

        expected = _EXPECTED.get(self._state)
        if expected is not None:
            self._fail(f"Expected `{expected}` before the end of the response")
        self._reset()
        self._finished = True
        return units

    def _feed_line(self, line: str) -> ParsedUnit | None:
        self._line_no += 1
        marker = line.strip()
        state = self._state

        opens = None
        if head_pattern.match(marker):
            opens = _State.SEARCH
        elif write_head_pattern.match(marker):
            opens = _State.WRITE

        if opens is not None:
            if state in _EXPECTED:
                self._fail(f"Expected `{_EXPECTED[state]}`, found `{marker}`")
                self._remember_candidates()
            self._open(line, opens)
            return None

        if state is _State.PROSE:
            self._remember(line)
            return None

        if state is _State.SKIP:
            if updated_pattern.match(marker) or write_end_pattern.match(marker):
                self._reset()
            else:
                self._remember(line)
            return None

        self._block.append(line)

        if state is _State.SEARCH:
            if divider_pattern.match(marker):
                self._state = _State.REPLACE
                self._recent = []
            elif updated_pattern.match(marker) or write_end_pattern.match(marker):
                self._fail(f"Expected `{DIVIDER_ERR}`, found `{marker}`")
                self._reset()
            else:
                self._search.append(line)
                self._remember(line)
            return None

        if state is _State.REPLACE:
            if updated_pattern.match(marker):
                return self._close()
            if write_end_pattern.match(marker):
                self._fail(f"Expected `{UPDATED_ERR}`, found `{marker}`")
                self._reset()
                return None
        elif write_end_pattern.match(marker):
            return self._close()
        elif updated_pattern.match(marker):
            self._fail(f"Expected `{WRITE_END_ERR}`, found `{marker}`")
            self._reset()
            return None

        self._replace.append(line)
        self._remember(line)
        return None

    def _remember(self, line: str) -> None:
        self._recent.append(line)
        del self._recent[:-LOOKBACK_LINES]

    def _open(self, line: str, state: _State) -> None:
        first, candidates = find_filename(self._recent, self.fence)
        self._block = self._recent[first:] + [line]
        self._recent = []
        self._search = []
        self._replace = []

        if candidates:
            self._candidates = candidates
        elif self._current_filename:
            self._candidates = [self._current_filename]
        else:
            self._candidates = []
            self._errors.append(
                MissingFilenameError(
                    missing_filename_err.format(fence=self.fence),
                    line=self._line_no,
                    source=line.rstrip("\r\n"),
                )
            )
            logger.warning("edit block at line %d has no file path", self._line_no)
            self._state = _State.SKIP
            return

        self._state = state

    def _close(self) -> ParsedUnit:
        search = "".join(self._search)
        content = "".join(self._replace)
        # Only a SEARCH section with no lines at all means a whole-file write.
        is_write = self._state is _State.WRITE or not self._search

        # A new file must not be fuzzy-matched onto an existing one.
        file_path = pick_filename(self._candidates, None if is_write else self.valid_fnames)
        self._current_filename = file_path

        action: Replace | Write
        if is_write:
            action = Write(file_path=file_path, content=content)
        else:
            action = Replace(file_path=file_path, old=search, new=content)

        unit = ParsedUnit(action=action, source="".join(self._block).rstrip("\r\n"))
        logger.debug("parsed %s block for %s", action.kind, file_path)
        self._reset()
        return unit

    def _remember_candidates(self) -> None:
        if self._candidates:
            self._current_filename = pick_filename(self._candidates, self.valid_fnames)

    def _fail(self, reason: str) -> None:
        source = "".join(self._block).rstrip("\r\n")
        self._errors.append(ParseError(reason, line=self._line_no, source=source))
        logger.warning("malformed edit block at line %d: %s", self._line_no, reason)

    def _reset(self) -> None:
        self._state = _State.PROSE
        self._block = []
        self._search = []
        self._replace = []
        self._candidates = []
        self._recent = []


def parse_edit_actions(
    content: str,
    fence: Fence = DEFAULT_FENCE,
    valid_fnames: Sequence[str] | None = None,
) -> tuple[list[ParsedUnit], list[ParseError]]:
    """Parse a complete response in one go."""
    parser = EditActionParser(fence=fence, valid_fnames=valid_fnames)
    units = parser.parse_chunk(content)
    units.extend(parser.finish())
    return units, parser.errors()
