"""Locate search text in a document snapshot and describe the change as a `Diff`.

Nothing here mutates a document. Every function is a pure function of its
arguments so the session can run it on a worker thread.
"""

import logging
from difflib import SequenceMatcher

from .fuzzy import find_similar_lines
from .types import Diff, MatchFailure, TextEdit

logger = logging.getLogger(__name__)


def _line_offsets(lines: list[str]) -> list[int]:
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))
    return offsets


def _body(line: str) -> str:
    return line.rstrip("\r\n")


def _indent(line: str) -> str:
    body = _body(line)
    return body[: len(body) - len(body.lstrip())]


def replace_exact(old: str, new: str, snapshot: str) -> Diff | None:
    if not old:
        return None

    index = snapshot.find(old)
    if index < 0:
        return None

    return Diff((TextEdit(index, index + len(old), new),))


def reindent(lines: list[str], target: str, reference: str) -> list[str]:
    """Shift ``lines`` by the difference between ``target`` and ``reference`` indentation.

    Added indentation is cut from the front of ``target``, so a tab-indented
    document gets tabs in front of whatever indentation ``lines`` already carry.
    """
    shift = len(target) - len(reference)
    if shift >= 0:
        prefix = target[:shift]
        return [prefix + line if line.strip() else line for line in lines]

    result: list[str] = []
    for line in lines:
        if not line.strip():
            result.append(line)
            continue
        leading = len(line) - len(line.lstrip())
        result.append(line[min(-shift, leading) :])
    return result


def replace_with_flexible_indent(old: str, new: str, snapshot: str) -> Diff | None:
    # Models often get leading whitespace wrong, usually uniformly across
    # SEARCH and REPLACE. Match on stripped lines, then carry the document's
    # indentation over to the replacement.
    old_lines = old.splitlines()

    # Drop leading blank lines, they are often added spuriously.
    while old_lines and not old_lines[0].strip():
        old_lines.pop(0)
    if not old_lines:
        return None

    doc_lines = snapshot.splitlines(keepends=True)
    wanted = [line.lstrip() for line in old_lines]
    count = len(wanted)

    for index in range(len(doc_lines) - count + 1):
        window = doc_lines[index : index + count]
        if any(_body(line).lstrip() != want for line, want in zip(window, wanted)):
            continue

        new_lines = reindent(new.splitlines(keepends=True), _indent(window[0]), _indent(old_lines[0]))
        replacement = "".join(new_lines)

        last = window[-1]
        ending = last[len(_body(last)) :]
        if replacement and ending and not replacement.endswith(("\n", "\r")):
            replacement += ending

        offsets = _line_offsets(doc_lines)
        logger.debug("flexible indent match at line %d", index + 1)
        return Diff((TextEdit(offsets[index], offsets[index + count], replacement),))

    return None


def locate_and_diff(
    old: str,
    new: str,
    snapshot: str,
    file_path: str = "",
    *,
    suggest: bool = True,
) -> Diff | MatchFailure:
    # Try to match exactly, then be flexible about indentation.
    diff = replace_exact(old, new, snapshot)
    if diff is None:
        diff = replace_with_flexible_indent(old, new, snapshot)
    if diff is not None:
        return diff

    return MatchFailure(
        file_path=file_path,
        search=old,
        similar_lines=find_similar_lines(old, snapshot) if suggest else "",
        already_applied=bool(new.strip()) and new in snapshot,
    )


def whole_file_diff(new_content: str, snapshot: str) -> Diff:
    old_lines = snapshot.splitlines(keepends=True)
    new_lines = new_content.splitlines(keepends=True)
    offsets = _line_offsets(old_lines)

    matcher = SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    edits = [
        TextEdit(offsets[i1], offsets[i2], "".join(new_lines[j1:j2]))
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]
    return Diff(tuple(edits))
