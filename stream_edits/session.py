"""Drive one edit request: streamed model output in, applied edits and a report out.

Actions are applied strictly in the order they are parsed. Each one is
matched against the document as already changed by the actions before it, so
the loop never starts action N+1 before action N has been applied or recorded
as a failed search. Only the match step may run on a worker thread.
"""

import logging
from collections.abc import AsyncIterable, Hashable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial

import anyio.to_thread as to_thread

from .config import EditSettings
from .errors import EditSessionError, NoChangesError, ParseError
from .interfaces import AuditLog, ChangeTracker, DocumentStore, InferenceClient
from .match import locate_and_diff
from .parser import EditActionParser
from .prompts import build_edit_request
from .request import Message
from .types import DEFAULT_FENCE, Diff, Fence, MatchFailure, ParsedUnit, Replace

logger = logging.getLogger(__name__)

SUCCESS_OUTPUT_HEADER = "Successfully applied. Here's a list of changes:"
ERROR_OUTPUT_HEADER_NO_EDITS = "I couldn't apply any edits!"
ERROR_OUTPUT_HEADER_WITH_EDITS = "Errors occurred. First, here's a list of the edits we managed to apply:"
NO_CHANGES_MESSAGE = (
    "The instructions didn't lead to any changes. You might need to consult the file contents first."
)


class SessionStatus(StrEnum):
    INITIATED = "initiated"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class SessionState:
    applied: list[ParsedUnit] = field(default_factory=list)
    changed: set[Hashable] = field(default_factory=set)
    bad_searches: list[MatchFailure] = field(default_factory=list)

    def transcript(self, header: str) -> str:
        return header + "".join(f"\n\n{unit.source}" for unit in self.applied)


def render_report(
    state: SessionState,
    parse_errors: Sequence[ParseError],
    fence: Fence = DEFAULT_FENCE,
) -> str:
    """Return the success transcript for ``state``, or raise `EditSessionError` carrying the failure report.

    Excerpts in the failure report are wrapped in ``fence``.
    """
    open_fence, close_fence = fence
    if not parse_errors and not state.bad_searches:
        if not state.changed:
            raise NoChangesError(message=NO_CHANGES_MESSAGE)
        return state.transcript(SUCCESS_OUTPUT_HEADER)

    edited = bool(state.changed)
    parts = [state.transcript(ERROR_OUTPUT_HEADER_WITH_EDITS if edited else ERROR_OUTPUT_HEADER_NO_EDITS)]

    if state.bad_searches:
        parts.append(f"\n\n# {len(state.bad_searches)} SEARCH/REPLACE block(s) failed to match:\n")
        for failure in state.bad_searches:
            search = failure.search.rstrip("\r\n")
            parts.append(f"\n## No exact match in: {failure.file_path}\n{open_fence}\n{search}\n{close_fence}\n")
            if failure.similar_lines:
                parts.append(
                    f"\nDid you mean to match some of these actual lines from {failure.file_path}?\n\n"
                    f"{open_fence}\n{failure.similar_lines}\n{close_fence}\n"
                )
            if failure.already_applied:
                parts.append(
                    "\nAre you sure you need this SEARCH/REPLACE block?\n"
                    f"The REPLACE lines are already in {failure.file_path}!\n"
                )
        parts.append(
            "\nThe SEARCH section must exactly match an existing block of lines including all white"
            " space, comments, indentation, docstrings, etc."
        )

    if parse_errors:
        parts.append(f"\n\n# {len(parse_errors)} SEARCH/REPLACE block(s) failed to parse:\n")
        for error in parse_errors:
            parts.append(f"- {error}\n")
            if error.source:
                parts.append(f"{open_fence}\n{error.source}\n{close_fence}\n")

    if edited:
        parts.append("\n\nThe other SEARCH/REPLACE blocks were applied successfully. Do not re-send them!\n")

    parts.append(
        ("" if edited else "\n\n")
        + "You can fix errors by running the tool again. You can include instructions,"
        " but errors are part of the conversation so you don't need to repeat them.\n"
    )

    raise EditSessionError(
        message="".join(parts),
        failed=list(state.bad_searches),
        parse_errors=list(parse_errors),
        applied=list(state.applied),
    )


class EditSession:
    def __init__(
        self,
        store: DocumentStore,
        tracker: ChangeTracker,
        *,
        settings: EditSettings | None = None,
        audit: AuditLog | None = None,
        session_id: int = 0,
        valid_fnames: Sequence[str] | None = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.settings = settings or EditSettings()
        self.audit = audit
        self.session_id = session_id
        self.parser = EditActionParser(fence=self.settings.fence_pair, valid_fnames=valid_fnames)
        self.state = SessionState()
        self.status = SessionStatus.INITIATED
        self._stream_ended = False

    async def run(self, chunks: AsyncIterable[str]) -> str:
        async for chunk in chunks:
            await self.process_chunk(chunk)
        return await self.finalize()

    async def process_chunk(self, chunk: str) -> None:
        self._expect_open()
        self.status = SessionStatus.STREAMING

        units = self.parser.parse_chunk(chunk)
        self._record(chunk, units)
        for unit in units:
            await self.apply_action(unit)

    async def end_stream(self) -> None:
        if self._stream_ended:
            return
        self._expect_open()
        self.status = SessionStatus.STREAMING
        self._stream_ended = True

        units = self.parser.finish()
        if units:
            self._record("", units)
        for unit in units:
            await self.apply_action(unit)

    async def apply_action(self, unit: ParsedUnit) -> None:
        action = unit.action
        handle = await self.store.resolve(action.file_path)

        result: Diff | MatchFailure
        if isinstance(action, Replace):
            snapshot = await self.store.snapshot(handle)
            result = await self._locate(action, snapshot)
        else:
            result = await self.store.diff(handle, action.content)

        if isinstance(result, MatchFailure):
            logger.warning("search text not found in %s", action.file_path)
            self.state.bad_searches.append(result)
            return

        self.store.apply(handle, result)
        self.state.applied.append(unit)
        self.state.changed.add(handle)
        logger.debug("applied %s to %s", action.kind, action.file_path)

    async def finalize(self) -> str:
        self._expect_open()
        await self.end_stream()
        self.status = SessionStatus.FINALIZING

        # Save each document once, however many edits it received.
        for handle in self.state.changed:
            await self.store.save(handle)
        try:
            self.tracker.notify_edited(set(self.state.changed))
        except Exception:
            logger.exception("failed to report edited documents for edit session %s", self.session_id)

        try:
            output = render_report(self.state, self.parser.errors(), self.settings.fence_pair)
        except EditSessionError:
            self.status = SessionStatus.FAILED
            logger.info(
                "edit session %s failed: %d applied, %d unmatched, %d malformed",
                self.session_id,
                len(self.state.applied),
                len(self.state.bad_searches),
                len(self.parser.errors()),
            )
            raise

        self.status = SessionStatus.SUCCEEDED
        logger.info("edit session %s applied %d edit(s)", self.session_id, len(self.state.applied))
        return output

    async def _locate(self, action: Replace, snapshot: str) -> Diff | MatchFailure:
        locate = partial(
            locate_and_diff,
            action.old,
            action.new,
            snapshot,
            action.file_path,
            suggest=self.settings.suggest_similar_lines,
        )
        if self.settings.offload_matching:
            return await to_thread.run_sync(locate)
        return locate()

    def _expect_open(self) -> None:
        if self.status not in (SessionStatus.INITIATED, SessionStatus.STREAMING):
            raise RuntimeError(f"Edit session is already {self.status}")

    def _record(self, chunk: str, units: Sequence[ParsedUnit]) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record_chunk(self.session_id, chunk, units)
        except Exception:
            logger.exception("failed to record response chunk for edit session %s", self.session_id)


async def run_edit_session(
    instructions: str,
    messages: Sequence[Message],
    *,
    client: InferenceClient,
    store: DocumentStore,
    tracker: ChangeTracker,
    settings: EditSettings | None = None,
    audit: AuditLog | None = None,
    session_id: int = 0,
    valid_fnames: Sequence[str] | None = None,
) -> str:
    settings = settings or EditSettings()
    request = build_edit_request(
        messages,
        instructions,
        fence=settings.fence_pair,
        temperature=settings.temperature,
    )
    session = EditSession(
        store,
        tracker,
        settings=settings,
        audit=audit,
        session_id=session_id,
        valid_fnames=valid_fnames,
    )
    return await session.run(client.stream_completion_text(request))
